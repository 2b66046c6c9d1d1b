import pytest

from src.layout_classifier import (
    LayoutClassifier,
    RuleKind,
    TemplateRegistry,
    TemplateScore,
    ValueType,
    parse_template,
)
from src.utils.exceptions import TemplateConfigError, TemplateNotRecognizedError

from conftest import DRIVER_LICENSE, GENERIC, PASSPORT, make_tokens


def _template(template_id, version=1, anchors=("IDENTITY CARD",)):
    return parse_template({
        "id": template_id,
        "version": version,
        "anchors": list(anchors),
        "fields": [
            {"name": "idNumber", "required": True,
             "rule": {"kind": "label", "labels": ["ID"]}},
        ],
    })


def test_registry_loads_all_templates(registry):
    assert len(registry) == 3
    assert registry.fallback.template_id == "generic-id-v1"
    assert "generic-id-v1" not in [t.template_id for t in registry.candidates]


def test_template_schema_is_parsed(driver_license):
    dob = driver_license.get_field("dateOfBirth")

    assert dob.required
    assert dob.value_type is ValueType.DATE
    assert dob.past_only
    assert dob.rule.kind is RuleKind.LABEL
    assert driver_license.get_field("fullName").rule.sources == ("firstName", "lastName")
    assert "eyeColor" in driver_license.field_names


def test_driver_license_is_recognized(registry):
    classification = LayoutClassifier(registry).classify(make_tokens(DRIVER_LICENSE))

    assert classification.template.template_id == "us-driver-license-v1"
    assert not classification.fallback
    assert classification.score >= 0.5


def test_passport_is_recognized(registry):
    classification = LayoutClassifier(registry).classify(make_tokens(PASSPORT))

    assert classification.template.template_id == "passport-td3-v1"
    assert classification.score == pytest.approx(1.0)


def test_unknown_layout_raises(registry):
    with pytest.raises(TemplateNotRecognizedError) as excinfo:
        LayoutClassifier(registry).classify(make_tokens(GENERIC))
    assert excinfo.value.details["threshold"] == 0.5


def test_unknown_layout_falls_back_to_generic(registry):
    classification = LayoutClassifier(registry).classify_or_fallback(make_tokens(GENERIC))

    assert classification.fallback
    assert classification.template.template_id == "generic-id-v1"


def test_no_tokens_falls_back(registry):
    classification = LayoutClassifier(registry).classify_or_fallback([])
    assert classification.fallback


def test_anchor_outside_region_counts_half(registry, driver_license):
    # Move the title to the bottom of the card
    rows = [
        (text, x1, y1 + 800, x2, y2 + 800) if text in ("DRIVER", "LICENSE") else (text, x1, y1, x2, y2)
        for text, x1, y1, x2, y2 in DRIVER_LICENSE
    ]
    classifier = LayoutClassifier(registry)

    in_place = classifier.score(driver_license, make_tokens(DRIVER_LICENSE))
    moved = classifier.score(driver_license, make_tokens(rows))

    assert in_place.anchor_share == pytest.approx(7 / 11)
    assert moved.anchor_share == pytest.approx(5.5 / 11)


def test_equal_scores_prefer_higher_version():
    older = _template("national-id-v1", version=1)
    newer = _template("national-id-v2", version=2)
    registry = TemplateRegistry([older, newer, _template("generic-id-v1", anchors=())])

    classification = LayoutClassifier(registry).classify(
        make_tokens([("IDENTITY", 100, 50, 300, 90), ("CARD", 310, 50, 400, 90),
                     ("ID", 100, 200, 140, 240), ("X123456", 150, 200, 300, 240)])
    )

    assert classification.template.template_id == "national-id-v2"


def test_full_ties_break_by_template_id():
    scores = [
        TemplateScore("b-template", 1, 0.8, 1.0, 1, 1),
        TemplateScore("a-template", 1, 0.8, 1.0, 1, 1),
        TemplateScore("c-template", 1, 0.8, 1.0, 2, 2),
    ]
    ordered = sorted(scores, key=TemplateScore.sort_key)
    assert [s.template_id for s in ordered] == ["c-template", "a-template", "b-template"]


def test_malformed_templates_are_rejected():
    with pytest.raises(TemplateConfigError):
        parse_template({"id": "x", "fields": [{"name": "a", "rule": {"kind": "guess"}}]})

    with pytest.raises(TemplateConfigError):
        parse_template({"id": "x", "fields": [{"name": "a", "rule": {"kind": "label"}}]})

    with pytest.raises(TemplateConfigError):
        parse_template({"id": "x", "fields": [
            {"name": "a", "rule": {"kind": "derived", "sources": ["missing"]}}
        ]})

    with pytest.raises(TemplateConfigError):
        parse_template({"id": "x", "fields": [
            {"name": "a", "rule": {"kind": "pattern", "pattern": "\\d+"}},
            {"name": "a", "rule": {"kind": "pattern", "pattern": "\\d+"}},
        ]})


def test_missing_template_file_is_a_config_error(tmp_path):
    with pytest.raises(TemplateConfigError):
        TemplateRegistry.load(tmp_path / "missing.yaml")
