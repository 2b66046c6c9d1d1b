from datetime import date

import pytest

from src.field_extraction import ExtractedField, FieldExtractor, FieldIssue, ScanStatus
from src.postprocessor import (
    ChronologyValidator,
    ConfidenceValidator,
    DateNormalizer,
    EnumNormalizer,
    NameNormalizer,
    NumberNormalizer,
    PersonName,
    PostProcessor,
    ShapeValidator,
    TextNormalizer,
)

from conftest import DRIVER_LICENSE, GENERIC, PASSPORT, TODAY, make_tokens, with_rows


def _process(template, rows, **kwargs):
    tokens = make_tokens(rows)
    fields = FieldExtractor().extract(tokens, template)
    return PostProcessor(today=TODAY).process(fields, template, len(tokens), **kwargs)


def _values(result):
    return {name: f.normalized_value for name, f in result.fields.items()}


# -----------------------------------------------------------------------------
# Normalizers
# -----------------------------------------------------------------------------

def test_explicit_date_formats_win():
    normalizer = DateNormalizer()

    assert normalizer.normalize("03/15/1985", formats=["%m/%d/%Y"]) == date(1985, 3, 15)
    assert normalizer.normalize("15.03.1985", formats=["%m/%d/%Y", "%d.%m.%Y"]) == date(1985, 3, 15)


def test_date_locale_preference_resolves_ambiguity():
    normalizer = DateNormalizer()

    assert normalizer.normalize("03/04/2020") == date(2020, 3, 4)
    assert normalizer.normalize("03/04/2020", day_first=True) == date(2020, 4, 3)


def test_past_only_dates_move_back_a_century():
    normalizer = DateNormalizer()

    assert normalizer.normalize("850101", formats=["%y%m%d"], past_only=True, today=TODAY) == date(1985, 1, 1)
    assert normalizer.normalize("300101", formats=["%y%m%d"], past_only=True, today=TODAY) == date(1930, 1, 1)
    assert normalizer.normalize("300101", formats=["%y%m%d"], today=TODAY) == date(2030, 1, 1)


def test_incomplete_or_garbled_dates_are_rejected():
    normalizer = DateNormalizer()

    assert normalizer.normalize("1985") is None
    assert normalizer.normalize("") is None
    assert normalizer.normalize("99/99/1985", formats=["%m/%d/%Y"]) is None


def test_digit_lookalikes_are_repaired_in_numeric_dates():
    assert DateNormalizer().normalize("O3/l5/1985", formats=["%m/%d/%Y"]) == date(1985, 3, 15)


@pytest.mark.parametrize("raw, order, expected", [
    ("JOHN MICHAEL DOE", "first_last", PersonName("John", "Michael", "Doe")),
    ("DOE JOHN", "last_first", PersonName("John", None, "Doe")),
    ("Doe, John", "first_last", PersonName("John", None, "Doe")),
    ("ERIKSSON<<ANNA<MARIA", "last_first", PersonName("Anna", "Maria", "Eriksson")),
])
def test_names_are_split_into_components(raw, order, expected):
    assert NameNormalizer().normalize(raw, order) == expected


def test_person_name_parts():
    name = PersonName("Anna", "Maria", "Eriksson")

    assert name.full == "Anna Maria Eriksson"
    assert str(name) == "Anna Maria Eriksson"
    assert name.part("last") == "Eriksson"
    assert name.part("first") == "Anna"


def test_enum_matching_is_case_insensitive():
    vocabulary = (("Brown", ("BRO", "BRN")), ("Male", ("M",)))
    normalizer = EnumNormalizer()

    assert normalizer.normalize("bro", vocabulary) == "Brown"
    assert normalizer.normalize("male", vocabulary) == "Male"
    assert normalizer.normalize("PUR", vocabulary) is None


@pytest.mark.parametrize("raw, unit, expected", [
    ("5'-10\"", "in", 70.0),
    ("5-10", "in", 70.0),
    ("178 cm", "in", 70.1),
    ("180 lb", "lb", 180.0),
    ("82 kg", "lb", 180.8),
    ("12", None, 12.0),
])
def test_measurements_are_converted(raw, unit, expected):
    assert NumberNormalizer().normalize(raw, unit) == pytest.approx(expected)


def test_text_is_cleaned():
    normalizer = TextNormalizer()

    assert normalizer.normalize("  123   MAIN ST. ") == "123 MAIN ST"
    assert normalizer.normalize("UTO<<") == "UTO"
    assert normalizer.normalize("<<<") is None


# -----------------------------------------------------------------------------
# Validators
# -----------------------------------------------------------------------------

def test_shape_validator():
    validator = ShapeValidator()

    assert validator.applies_to("zipCode")
    assert not validator.applies_to("city")
    assert validator.validate("zipCode", "62701-1234")[0]
    assert not validator.validate("zipCode", "6270")[0]
    assert validator.validate("state", "il")[0]
    assert not validator.validate("idNumber", "A1")[0]


def test_chronology_names_the_field_at_fault():
    validator = ChronologyValidator(today=TODAY)

    violations = validator.validate({
        "dateOfBirth": date(2024, 1, 1),
        "issueDate": date(2023, 3, 15),
        "expirationDate": date(2031, 3, 15),
    })

    assert [name for name, _ in violations] == ["dateOfBirth"]
    assert validator.validate({"issueDate": date(2027, 1, 1)})[0][0] == "issueDate"
    assert validator.validate({}) == []


def test_confidence_validator_ignores_absent_fields():
    validator = ConfidenceValidator(threshold=0.5)

    assert validator.validate(ExtractedField.not_found("idNumber"))[0]
    assert not validator.validate(ExtractedField("idNumber", raw_value="X1", confidence=0.4))[0]


# -----------------------------------------------------------------------------
# PostProcessor
# -----------------------------------------------------------------------------

def test_driver_license_is_complete(driver_license):
    result = _process(driver_license, DRIVER_LICENSE)
    values = _values(result)

    assert result.status is ScanStatus.COMPLETE
    assert result.matches_template(driver_license)
    assert values["fullName"] == PersonName("John", "Michael", "Doe")
    assert values["dateOfBirth"] == date(1985, 3, 15)
    assert values["expirationDate"] == date(2031, 3, 15)
    assert values["gender"] == "Male"
    assert values["eyeColor"] == "Brown"
    assert values["height"] == 70.0
    assert values["weight"] == 180.0
    assert values["address"] == "123 MAIN ST"
    assert result.fields["dateOfBirth"].display_value == "1985-03-15"
    assert not result.warnings


def test_passport_dates_and_names_come_from_the_mrz(passport):
    result = _process(passport, PASSPORT)
    values = _values(result)

    assert result.status is ScanStatus.COMPLETE
    assert values["fullName"] == PersonName("Anna", "Maria", "Eriksson")
    assert values["lastName"] == "Eriksson"
    assert values["firstName"] == "Anna"
    assert values["dateOfBirth"] == date(1974, 8, 12)
    assert values["expirationDate"] == date(2034, 4, 15)
    assert values["gender"] == "Female"
    assert values["country"] == "UTO"


def test_expiration_before_issue_is_inconsistent(driver_license):
    result = _process(driver_license, with_rows(DRIVER_LICENSE, **{"03/15/2031": "01/01/2020"}))

    expiration = result.fields["expirationDate"]
    assert expiration.has_issue(FieldIssue.INCONSISTENT)
    assert expiration.normalized_value == date(2020, 1, 1)
    assert result.status is ScanStatus.PARTIAL


def test_unknown_enum_keeps_the_raw_value(driver_license):
    result = _process(driver_license, with_rows(DRIVER_LICENSE, BRO="PUR"))

    eye_color = result.fields["eyeColor"]
    assert eye_color.raw_value == "PUR"
    assert eye_color.normalized_value is None
    assert eye_color.has_issue(FieldIssue.UNRECOGNIZED_ENUM)
    assert eye_color.display_value == "PUR"
    assert result.status is ScanStatus.COMPLETE


def test_unparseable_required_field_makes_the_scan_partial(driver_license):
    result = _process(driver_license, with_rows(DRIVER_LICENSE, **{"03/15/1985": "99/99/1985"}))

    assert result.fields["dateOfBirth"].has_issue(FieldIssue.UNPARSEABLE)
    assert result.fields["dateOfBirth"].raw_value == "99/99/1985"
    assert result.status is ScanStatus.PARTIAL


def test_degraded_capture_lowers_confidence(driver_license):
    clean = _process(driver_license, DRIVER_LICENSE)
    degraded = _process(driver_license, DRIVER_LICENSE, degraded=True)

    assert degraded.degraded
    assert degraded.fields["dateOfBirth"].confidence == pytest.approx(
        clean.fields["dateOfBirth"].confidence * 0.85
    )
    assert any("boundary" in w for w in degraded.warnings)


def test_generic_fallback_is_flagged(generic):
    result = _process(generic, GENERIC, fallback=True)
    values = _values(result)

    assert result.fallback_template
    assert any(generic.template_id in w for w in result.warnings)
    assert values["fullName"] == PersonName("Jane", None, "Doe")
    assert values["idNumber"] == "ABC123456"
    assert values["dateOfBirth"] == date(1990, 1, 2)
    assert result.fields["idNumber"].confidence == pytest.approx(0.85 * 0.9)


def test_missing_fields_are_filled_as_not_found(driver_license):
    result = PostProcessor(today=TODAY).process({}, driver_license, token_count=4)

    assert result.matches_template(driver_license)
    assert result.missing_fields == list(driver_license.field_names)
    assert result.status is ScanStatus.PARTIAL


def test_no_tokens_fails(generic):
    result = PostProcessor(today=TODAY).process({}, generic, token_count=0)

    assert result.status is ScanStatus.FAILED
    assert result.errors == ["No text recognized on the document"]
    assert all(f.failure_reason is FieldIssue.NOT_FOUND for f in result.fields.values())


def test_result_groups_and_copy_text(driver_license):
    result = _process(driver_license, DRIVER_LICENSE)

    groups = result.grouped()
    assert list(groups) == ["personal", "address", "document"]
    assert "dateOfBirth" in groups["personal"]
    assert "zipCode" in groups["address"]
    assert "idNumber" in groups["document"]

    text = result.to_text()
    assert "dateOfBirth: 1985-03-15" in text
    assert "fullName: John Michael Doe" in text

    payload = result.to_dict()
    assert payload["status"] == "Complete"
    assert payload["fields"]["dateOfBirth"]["normalized_value"] == "1985-03-15"
    assert payload["fields"]["fullName"]["normalized_value"]["last"] == "Doe"
