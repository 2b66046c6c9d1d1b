"""
Extraction Result Data Classes.

This module defines the data structures for extracted identity fields
and for the final scan result delivered to the caller.

The field set of a ScanResult is fixed by its template: every declared
field is present in ``fields``, found or not. Absence is explicit (a
field with no raw value and a NotFound issue), never a missing key.

Author: ML Engineering Team
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from config import get_config

GROUP_ORDER = ('personal', 'address', 'document')


class FieldIssue(str, Enum):
    """Field-level annotations. None of them is fatal."""
    NOT_FOUND = "NotFound"
    INCONSISTENT = "Inconsistent"
    UNRECOGNIZED_ENUM = "UnrecognizedEnum"
    UNPARSEABLE = "Unparseable"
    LOW_CONFIDENCE = "LowConfidence"


class ScanStatus(str, Enum):
    """Aggregate outcome of one scan."""
    COMPLETE = "Complete"
    PARTIAL = "Partial"
    FAILED = "Failed"


@dataclass(frozen=True)
class TokenRef:
    """
    Provenance of a raw value: a character span of one token.

    Attributes:
        token_index: Reading-order index of the token.
        text: The covered characters.
        start: Span start within the token text.
        end: Span end (exclusive).
    """
    token_index: int
    text: str
    start: int
    end: int

    def overlaps(self, other: 'TokenRef') -> bool:
        return (
            self.token_index == other.token_index
            and self.start < other.end
            and other.start < self.end
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'token_index': self.token_index,
            'text': self.text,
            'start': self.start,
            'end': self.end,
        }


def _format_value(value: Any) -> str:
    """Copy-friendly string for a normalized value."""
    if isinstance(value, (date, datetime)):
        return value.strftime(get_config("postprocessing.date.output_format", "%Y-%m-%d"))
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else f"{value:g}"
    return str(value)


def _jsonable(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    return value


@dataclass
class ExtractedField:
    """
    One field of a scan result.

    Attributes:
        name: Field name from the template.
        raw_value: Text as read from the document, None if not found.
        normalized_value: Typed value (date, PersonName, float, str), if
            normalization succeeded.
        confidence: Field confidence in [0, 1].
        provenance: Token spans the raw value came from.
        issues: Field-level annotations.
        messages: Human-readable detail for the issues.
        group: Display group (personal, address, document).
        value_type: Declared type of the normalized value.
        required: Whether the template requires this field.

    Example:
        >>> dob = result.fields["dateOfBirth"]
        >>> dob.normalized_value
        datetime.date(1985, 3, 15)
        >>> dob.display_value
        '1985-03-15'
    """
    name: str
    raw_value: Optional[str] = None
    normalized_value: Any = None
    confidence: float = 0.0
    provenance: List[TokenRef] = field(default_factory=list)
    issues: List[FieldIssue] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    group: str = 'document'
    value_type: str = 'string'
    required: bool = False

    @classmethod
    def not_found(cls, name: str, **kwargs) -> 'ExtractedField':
        """Build an absent field."""
        return cls(name=name, issues=[FieldIssue.NOT_FOUND], **kwargs)

    @property
    def present(self) -> bool:
        return self.raw_value is not None

    @property
    def normalized(self) -> bool:
        return self.normalized_value is not None

    @property
    def failure_reason(self) -> Optional[FieldIssue]:
        """NotFound for absent fields, None otherwise."""
        return None if self.present else FieldIssue.NOT_FOUND

    @property
    def display_value(self) -> str:
        """
        String shown to the user and copied to the clipboard.

        Prefers the normalized value, falls back to the raw text and is
        empty for absent fields.
        """
        if self.normalized_value is not None:
            return _format_value(self.normalized_value)
        return self.raw_value or ""

    def has_issue(self, issue: FieldIssue) -> bool:
        return issue in self.issues

    def flag(self, issue: FieldIssue, message: Optional[str] = None) -> None:
        """Add an issue once, with an optional message."""
        if issue not in self.issues:
            self.issues.append(issue)
        if message:
            self.messages.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'raw_value': self.raw_value,
            'normalized_value': _jsonable(self.normalized_value),
            'display_value': self.display_value,
            'confidence': round(self.confidence, 4),
            'provenance': [ref.to_dict() for ref in self.provenance],
            'issues': [issue.value for issue in self.issues],
            'messages': list(self.messages),
            'group': self.group,
            'value_type': self.value_type,
            'required': self.required,
        }

    def __repr__(self) -> str:
        return (
            f"ExtractedField('{self.name}', raw={self.raw_value!r}, "
            f"issues={[i.value for i in self.issues]})"
        )


@dataclass
class ScanResult:
    """
    Final result of one scan, delivered exactly once per session.

    Attributes:
        status: Complete, Partial or Failed.
        template_id: Template the fields were extracted with.
        fields: One entry per template field, keyed by field name.
        fallback_template: The generic template was used.
        degraded: The document boundary was not found.
        warnings: Non-fatal pipeline notes.
        errors: Fatal errors (Failed results only).
        timings: Seconds spent per stage.
        session_id: Session that produced the result.
        created_at: Result timestamp.

    Example:
        >>> result.status
        <ScanStatus.PARTIAL: 'Partial'>
        >>> result.fields["expirationDate"].issues
        [<FieldIssue.INCONSISTENT: 'Inconsistent'>]
    """
    status: ScanStatus
    template_id: str
    fields: Dict[str, ExtractedField] = field(default_factory=dict)
    fallback_template: bool = False
    degraded: bool = False
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)
    session_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def empty(cls, template, status: ScanStatus = ScanStatus.FAILED, **kwargs) -> 'ScanResult':
        """
        Result with every template field absent (NotFound).

        Args:
            template: DocumentTemplate whose field set to use.
            status: Aggregate status.
        """
        fields = {
            d.name: ExtractedField.not_found(
                d.name,
                group=d.group,
                value_type=d.value_type.value,
                required=d.required
            )
            for d in template.fields
        }
        return cls(status=status, template_id=template.template_id, fields=fields, **kwargs)

    def matches_template(self, template) -> bool:
        """Check that the field set is exactly the template's."""
        return (
            self.template_id == template.template_id
            and set(self.fields) == set(template.field_names)
        )

    @property
    def found_fields(self) -> Dict[str, ExtractedField]:
        return {name: f for name, f in self.fields.items() if f.present}

    @property
    def missing_fields(self) -> List[str]:
        return [name for name, f in self.fields.items() if not f.present]

    @property
    def average_confidence(self) -> float:
        """Average confidence across found fields."""
        found = self.found_fields
        if not found:
            return 0.0
        return sum(f.confidence for f in found.values()) / len(found)

    def grouped(self) -> Dict[str, Dict[str, ExtractedField]]:
        """
        Fields split into display groups (personal, address, document).

        Groups keep the template's field order; empty groups are kept.
        """
        groups: Dict[str, Dict[str, ExtractedField]] = {g: {} for g in GROUP_ORDER}
        for name, f in self.fields.items():
            groups.setdefault(f.group, {})[name] = f
        return groups

    def to_text(self) -> str:
        """Plain-text rendering of found fields, for copying."""
        lines = []
        for fields in self.grouped().values():
            for name, f in fields.items():
                if f.present:
                    lines.append(f"{name}: {f.display_value}")
        return '\n'.join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to dictionary format.

        Returns:
            Dictionary representation of the scan result.
        """
        return {
            'status': self.status.value,
            'template_id': self.template_id,
            'fallback_template': self.fallback_template,
            'degraded': self.degraded,
            'fields': {name: f.to_dict() for name, f in self.fields.items()},
            'warnings': list(self.warnings),
            'errors': list(self.errors),
            'timings': {k: round(v, 4) for k, v in self.timings.items()},
            'session_id': self.session_id,
            'created_at': self.created_at,
            'average_confidence': round(self.average_confidence, 4),
        }

    def to_json(self, indent: int = 2) -> str:
        """
        Convert to JSON string.

        Args:
            indent: JSON indentation level.

        Returns:
            JSON string representation.
        """
        return json.dumps(self.to_dict(), indent=indent)

    def __repr__(self) -> str:
        return (
            f"ScanResult(status={self.status.value}, template={self.template_id}, "
            f"found={len(self.found_fields)}/{len(self.fields)})"
        )
