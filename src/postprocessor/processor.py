"""
Main Post-Processor Module.

This module provides the PostProcessor class that turns raw extracted
fields into the final ScanResult.

Operations:
    - Normalize dates, names, enumerations, numbers and text
    - Validate field shapes and date chronology
    - Apply degraded/fallback confidence penalties
    - Flag low-confidence fields
    - Derive the aggregate status

Fields are annotated, never removed: the result always carries exactly
the template's field set.

Author: ML Engineering Team
"""

from datetime import date
from typing import Dict, List, Optional

from config import get_config
from src.utils.logger import get_logger
from src.field_extraction.extraction_result import (
    ExtractedField,
    FieldIssue,
    ScanResult,
    ScanStatus,
)
from src.layout_classifier.templates import DocumentTemplate, FieldDescriptor, ValueType
from .normalizers import (
    DateNormalizer,
    EnumNormalizer,
    NameNormalizer,
    NumberNormalizer,
    TextNormalizer,
)
from .validators import ChronologyValidator, ConfidenceValidator, ShapeValidator

# Initialize module logger
logger = get_logger(__name__)

# Issues that keep a required field from counting towards Complete
BLOCKING_ISSUES = (
    FieldIssue.NOT_FOUND,
    FieldIssue.INCONSISTENT,
    FieldIssue.UNRECOGNIZED_ENUM,
    FieldIssue.UNPARSEABLE,
)


class PostProcessor:
    """
    Normalizer and validator for extracted identity fields.

    Attributes:
        date_normalizer: DateNormalizer instance
        name_normalizer: NameNormalizer instance
        shape_validator: ShapeValidator instance
        chronology_validator: ChronologyValidator instance
        confidence_validator: ConfidenceValidator instance
        degraded_penalty: Confidence multiplier for full-frame fallbacks
        fallback_penalty: Confidence multiplier for the generic template

    Example:
        >>> processor = PostProcessor()
        >>> result = processor.process(fields, template, token_count=42)
        >>> result.status
        <ScanStatus.COMPLETE: 'Complete'>
    """

    def __init__(
        self,
        confidence_threshold: Optional[float] = None,
        today: Optional[date] = None
    ) -> None:
        """
        Initialize the post-processor with all sub-components.

        Args:
            confidence_threshold: LowConfidence threshold. Defaults to config.
            today: Fixed reference date for chronology checks (tests).
        """
        # Initialize normalizers
        self.date_normalizer = DateNormalizer()
        self.name_normalizer = NameNormalizer()
        self.enum_normalizer = EnumNormalizer()
        self.number_normalizer = NumberNormalizer()
        self.text_normalizer = TextNormalizer()

        # Initialize validators
        self.shape_validator = ShapeValidator()
        self.chronology_validator = ChronologyValidator(today=today)
        self.confidence_validator = ConfidenceValidator(confidence_threshold)

        # Load configuration
        self.degraded_penalty = get_config("postprocessing.degraded_penalty", 0.85)
        self.fallback_penalty = get_config("postprocessing.fallback_penalty", 0.9)
        self.today = today

        logger.info("PostProcessor initialized")

    def process(
        self,
        fields: Dict[str, ExtractedField],
        template: DocumentTemplate,
        token_count: int,
        degraded: bool = False,
        fallback: bool = False,
        today: Optional[date] = None
    ) -> ScanResult:
        """
        Normalize and validate extracted fields into a ScanResult.

        Steps:
            1. Fill any field the extractor did not return as NotFound
            2. Normalize each present field by its declared type
            3. Validate shapes and chronology
            4. Apply penalties and flag low confidence
            5. Derive the aggregate status

        Args:
            fields: Extracted fields keyed by name.
            template: Template the fields were extracted with.
            token_count: Number of non-blank recognized tokens.
            degraded: The image normalizer fell back to the full frame.
            fallback: The generic template was used.
            today: Reference date; overrides the constructor value.

        Returns:
            ScanResult whose field set is exactly the template's.
        """
        today = today or self.today or date.today()
        warnings: List[str] = []

        processed = {}
        for descriptor in template.fields:
            extracted = fields.get(descriptor.name)
            if extracted is None:
                extracted = ExtractedField.not_found(
                    descriptor.name,
                    group=descriptor.group,
                    value_type=descriptor.value_type.value,
                    required=descriptor.required
                )
            processed[descriptor.name] = extracted

        # Step 1: Normalize
        for descriptor in template.fields:
            extracted = processed[descriptor.name]
            if extracted.present:
                self._normalize_field(extracted, descriptor, template, today)

        # Step 2: Validate
        self._validate_shapes(processed)
        self._validate_chronology(processed, today)

        # Step 3: Penalties and confidence
        if degraded:
            warnings.append("Document boundary not found; extracted from the full frame")
            self._penalize(processed, self.degraded_penalty)
        if fallback:
            warnings.append(f"Layout not recognized; used generic template {template.template_id}")
            self._penalize(processed, self.fallback_penalty)

        for extracted in processed.values():
            is_confident, message = self.confidence_validator.validate(extracted)
            if not is_confident:
                extracted.flag(FieldIssue.LOW_CONFIDENCE, message)

        # Step 4: Status
        status = self._derive_status(processed, token_count)

        result = ScanResult(
            status=status,
            template_id=template.template_id,
            fields=processed,
            fallback_template=fallback,
            degraded=degraded,
            warnings=warnings
        )
        if status is ScanStatus.FAILED:
            result.errors.append("No text recognized on the document")

        self._log_processing_summary(result)
        return result

    def _normalize_field(
        self,
        extracted: ExtractedField,
        descriptor: FieldDescriptor,
        template: DocumentTemplate,
        today: date
    ) -> None:
        """
        Normalize one present field in place.

        A value that cannot be converted keeps its raw text and gets
        Unparseable (UnrecognizedEnum for vocabulary misses).
        """
        raw = extracted.raw_value
        value_type = descriptor.value_type

        if value_type is ValueType.DATE:
            formats = descriptor.date_formats + template.date_formats
            value = self.date_normalizer.normalize(
                raw,
                formats=formats,
                day_first=template.day_first,
                past_only=descriptor.past_only,
                today=today
            )
        elif value_type is ValueType.NAME:
            name = self.name_normalizer.normalize(raw, template.name_order)
            value = name.part(descriptor.rule.part) if name and descriptor.rule.part else name
        elif value_type is ValueType.ENUM:
            value = self.enum_normalizer.normalize(raw, descriptor.vocabulary)
            if value is None:
                extracted.flag(
                    FieldIssue.UNRECOGNIZED_ENUM,
                    f"'{raw}' is not one of {[c for c, _ in descriptor.vocabulary]}"
                )
                return
        elif value_type is ValueType.NUMBER:
            value = self.number_normalizer.normalize(raw, descriptor.unit)
        else:
            value = self.text_normalizer.normalize(raw)

        if value is None:
            extracted.flag(FieldIssue.UNPARSEABLE, f"Could not parse {value_type.value} from '{raw}'")
            logger.debug(f"Could not normalize {descriptor.name}: '{raw}'")
            return

        extracted.normalized_value = value
        if str(value) != raw:
            logger.debug(f"Normalized {descriptor.name}: '{raw}' -> '{value}'")

    def _validate_shapes(self, fields: Dict[str, ExtractedField]) -> None:
        for name, extracted in fields.items():
            if not self.shape_validator.applies_to(name) or not isinstance(extracted.normalized_value, str):
                continue
            is_valid, message = self.shape_validator.validate(name, extracted.normalized_value)
            if not is_valid:
                extracted.flag(FieldIssue.UNPARSEABLE, message)

    def _validate_chronology(self, fields: Dict[str, ExtractedField], today: date) -> None:
        dates = {
            name: f.normalized_value for name, f in fields.items()
            if isinstance(f.normalized_value, date)
        }
        for name, message in self.chronology_validator.validate(dates, today):
            fields[name].flag(FieldIssue.INCONSISTENT, message)

    def _penalize(self, fields: Dict[str, ExtractedField], factor: float) -> None:
        for extracted in fields.values():
            if extracted.present:
                extracted.confidence *= factor

    def _derive_status(self, fields: Dict[str, ExtractedField], token_count: int) -> ScanStatus:
        """
        Aggregate status.

        Failed without usable tokens. Complete when every required field
        is present and normalized without blocking issues and no field is
        inconsistent. Partial otherwise.
        """
        if token_count <= 0:
            return ScanStatus.FAILED

        for extracted in fields.values():
            if extracted.has_issue(FieldIssue.INCONSISTENT):
                return ScanStatus.PARTIAL
            if extracted.required and (
                not extracted.normalized
                or any(extracted.has_issue(issue) for issue in BLOCKING_ISSUES)
            ):
                return ScanStatus.PARTIAL

        return ScanStatus.COMPLETE

    def _log_processing_summary(self, result: ScanResult) -> None:
        flagged = {
            name: [i.value for i in f.issues]
            for name, f in result.fields.items()
            if f.present and f.issues
        }
        logger.info(
            f"Post-processing complete: status={result.status.value}, "
            f"{len(result.found_fields)}/{len(result.fields)} fields found, "
            f"{len(flagged)} flagged"
        )
        for name, issues in flagged.items():
            logger.debug(f"Field {name} flagged: {issues}")
