"""
Data Validators Module.

This module provides validation functions for:
    - Field shapes (ID number, ZIP code, state code)
    - Date chronology across fields
    - Confidence levels

Validators never remove a value. They report what is wrong and the
processor annotates the field at fault.

Author: ML Engineering Team
"""

import re
from datetime import date
from typing import Dict, List, Optional, Tuple

from config import get_config
from src.utils.logger import get_logger
from src.field_extraction.extraction_result import ExtractedField

# Initialize module logger
logger = get_logger(__name__)


class ShapeValidator:
    """
    Validates the textual shape of individual fields.

    Example:
        >>> validator = ShapeValidator()
        >>> validator.validate("zipCode", "12345")
        (True, 'Valid zipCode')
        >>> validator.validate("zipCode", "1234")
        (False, "zipCode '1234' does not match the expected shape")
    """

    def __init__(self) -> None:
        """Initialize the validator with configured patterns."""
        self.patterns = {
            'idNumber': re.compile(get_config(
                "postprocessing.validation.id_number_pattern", r"^[A-Z0-9][A-Z0-9 -]{3,19}$"
            )),
            'zipCode': re.compile(get_config(
                "postprocessing.validation.zip_code_pattern", r"^\d{5}(-\d{4})?$"
            )),
            'state': re.compile(get_config(
                "postprocessing.validation.state_pattern", r"^[A-Z]{2}$"
            )),
        }

    def applies_to(self, field_name: str) -> bool:
        return field_name in self.patterns

    def validate(self, field_name: str, value: str) -> Tuple[bool, str]:
        """
        Validate a field value against its shape.

        Args:
            field_name: Field name.
            value: Normalized string value.

        Returns:
            Tuple of (is_valid, message).
        """
        pattern = self.patterns.get(field_name)
        if pattern is None:
            return True, f"No shape rule for {field_name}"
        if pattern.match(value.upper()):
            return True, f"Valid {field_name}"
        return False, f"{field_name} '{value}' does not match the expected shape"


class ChronologyValidator:
    """
    Cross-field date checks.

    Rules:
        - issueDate <= today
        - expirationDate >= issueDate
        - today <= expirationDate (the document is not expired)
        - dateOfBirth < issueDate, and not in the future

    Each violation names the field at fault.

    Example:
        >>> validator = ChronologyValidator(today=date(2026, 1, 1))
        >>> validator.validate({"issueDate": date(2023, 3, 15),
        ...                     "expirationDate": date(2020, 1, 1)})
        [('expirationDate', 'expirationDate 2020-01-01 precedes issueDate 2023-03-15'), ...]
    """

    def __init__(self, today: Optional[date] = None) -> None:
        self.today = today

    def validate(self, dates: Dict[str, date], today: Optional[date] = None) -> List[Tuple[str, str]]:
        """
        Check date relationships.

        Args:
            dates: Normalized dates keyed by field name; missing fields
                are skipped.
            today: Reference date; overrides the constructor value.

        Returns:
            List of (field_at_fault, message).
        """
        today = today or self.today or date.today()
        issue = dates.get('issueDate')
        expiration = dates.get('expirationDate')
        birth = dates.get('dateOfBirth')
        violations: List[Tuple[str, str]] = []

        if issue and issue > today:
            violations.append(('issueDate', f"issueDate {issue} is in the future"))

        if expiration and issue and expiration < issue:
            violations.append((
                'expirationDate', f"expirationDate {expiration} precedes issueDate {issue}"
            ))

        if expiration and expiration < today:
            violations.append(('expirationDate', f"Document expired on {expiration}"))

        if birth:
            if birth > today:
                violations.append(('dateOfBirth', f"dateOfBirth {birth} is in the future"))
            if issue and birth >= issue:
                violations.append((
                    'dateOfBirth', f"dateOfBirth {birth} does not precede issueDate {issue}"
                ))

        for field_name, message in violations:
            logger.debug(f"Chronology violation on {field_name}: {message}")

        return violations


class ConfidenceValidator:
    """Flags fields whose confidence falls below the configured threshold."""

    def __init__(self, threshold: Optional[float] = None) -> None:
        self.threshold = (
            threshold if threshold is not None
            else get_config("postprocessing.confidence_threshold", 0.5)
        )

    def validate(self, extracted: ExtractedField) -> Tuple[bool, str]:
        if not extracted.present or extracted.confidence >= self.threshold:
            return True, "Confidence OK"
        return False, (
            f"{extracted.name} confidence {extracted.confidence:.2f} "
            f"below {self.threshold:.2f}"
        )
