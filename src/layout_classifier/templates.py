"""
Document Template Module.

This module defines the immutable description of one identity document
layout and loads the versioned template list from YAML.

A template declares:
    - Anchors: text that identifies the layout (with optional regions)
    - Fields: the closed set of field names the layout yields, each with
      an extraction rule, a value type and a display group
    - Locale: date formats, day-first preference and name order

Regions and distances are expressed on the 0-1000 grid used for
normalized token boxes.

Author: ML Engineering Team
"""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from re import Pattern
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from config import get_config
from src.utils.logger import get_logger
from src.utils.exceptions import TemplateConfigError

# Initialize module logger
logger = get_logger(__name__)

Region = Tuple[int, int, int, int]

# Display groups of the result sections
FIELD_GROUPS = ('personal', 'address', 'document')

NAME_ORDERS = ('first_last', 'last_first')
NAME_PARTS = ('first', 'middle', 'last')


class ValueType(str, Enum):
    """Declared type of a field's normalized value."""
    STRING = "string"
    DATE = "date"
    ENUM = "enum"
    NUMBER = "number"
    NAME = "name"


class RuleKind(str, Enum):
    """Extraction rule classes, with their overlap priority."""
    LABEL = "label"
    PATTERN = "pattern"
    POSITIONAL = "positional"
    DERIVED = "derived"

    @property
    def priority(self) -> int:
        return {'label': 3, 'pattern': 2, 'positional': 1, 'derived': 0}[self.value]


def compile_label(label: str) -> Pattern:
    """
    Compile a printed label into a whole-word, case-insensitive regex.

    Words of multi-word labels may be split across tokens.
    """
    words = [re.escape(word) for word in label.split()]
    return re.compile(r'(?<![A-Za-z0-9])' + r'\s+'.join(words) + r'(?![A-Za-z])', re.IGNORECASE)


def in_region(point: Tuple[float, float], region: Optional[Region]) -> bool:
    """Check whether a 0-1000 point falls inside a region (None = anywhere)."""
    if region is None:
        return True
    x, y = point
    x1, y1, x2, y2 = region
    return x1 <= x <= x2 and y1 <= y <= y2


@dataclass(frozen=True)
class ExtractionRule:
    """
    How a field's raw value is found among the tokens.

    Attributes:
        kind: Rule class (label, pattern, positional, derived).
        labels: Printed labels for label rules.
        label_patterns: Compiled labels.
        pattern: Value regex. For label rules it filters candidate
            values; for pattern rules it is searched over every line;
            for positional rules it filters the region text. A named
            group ``value`` selects the raw value.
        region: Area on the 0-1000 grid the value must lie in.
        max_distance: Largest label-to-value distance (label rules).
        max_tokens: Number of same-line tokens that may be joined.
        sources: Source fields (derived rules).
        part: Name component to take from the source (derived rules).
        joiner: String used to join derived sources.
        confidence: Rule-match confidence; None uses the configured
            default for the rule kind.
        prefer: Which pattern match wins first, "first" or "last".
    """
    kind: RuleKind
    labels: Tuple[str, ...] = ()
    label_patterns: Tuple[Pattern, ...] = ()
    pattern: Optional[Pattern] = None
    region: Optional[Region] = None
    max_distance: Optional[float] = None
    max_tokens: int = 1
    sources: Tuple[str, ...] = ()
    part: Optional[str] = None
    joiner: str = ' '
    confidence: Optional[float] = None
    prefer: str = 'first'

    @property
    def priority(self) -> int:
        return self.kind.priority


@dataclass(frozen=True)
class FieldDescriptor:
    """
    One field of a template schema.

    Attributes:
        name: Field name (e.g. "dateOfBirth").
        rule: Extraction rule.
        required: Whether the field counts towards a Complete status.
        value_type: Declared type of the normalized value.
        vocabulary: Enumeration as (canonical, aliases) pairs.
        group: Display group (personal, address, document).
        date_formats: Field-specific strptime formats, tried before the
            template's list.
        past_only: Dates that can never lie in the future (birth dates).
        unit: Target unit for numbers ("in", "lb").
    """
    name: str
    rule: ExtractionRule
    required: bool = False
    value_type: ValueType = ValueType.STRING
    vocabulary: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    group: str = 'document'
    date_formats: Tuple[str, ...] = ()
    past_only: bool = False
    unit: Optional[str] = None


@dataclass(frozen=True)
class Anchor:
    """Text that identifies a layout, optionally expected in a region."""
    text: str
    pattern: Pattern
    weight: float = 1.0
    region: Optional[Region] = None


@dataclass(frozen=True)
class DocumentTemplate:
    """
    Immutable description of one identity document layout.

    Attributes:
        template_id: Unique identifier (e.g. "us-driver-license-v1").
        version: Template version; higher wins classification ties.
        country: Issuing country code.
        doc_type: Document type (driver_license, passport, id_card).
        anchors: Identifying text.
        fields: Ordered field schema; order is the declaration order
            used to break extraction ties.
        date_formats: strptime formats, first match wins.
        day_first: Locale preference for ambiguous numeric dates.
        name_order: "first_last" or "last_first".
        description: Free text.

    Example:
        >>> template = registry.get("us-driver-license-v1")
        >>> template.field_names[:3]
        ('idNumber', 'lastName', 'firstName')
    """
    template_id: str
    version: int
    country: str
    doc_type: str
    anchors: Tuple[Anchor, ...]
    fields: Tuple[FieldDescriptor, ...]
    date_formats: Tuple[str, ...] = ('%m/%d/%Y',)
    day_first: bool = False
    name_order: str = 'first_last'
    description: str = ''

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def required_fields(self) -> Tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if f.required)

    def get_field(self, name: str) -> FieldDescriptor:
        for descriptor in self.fields:
            if descriptor.name == name:
                return descriptor
        raise KeyError(name)

    def __repr__(self) -> str:
        return f"DocumentTemplate('{self.template_id}', v{self.version}, fields={len(self.fields)})"


# =============================================================================
# LOADING
# =============================================================================

def _compile(source: str, regex: str, where: str) -> Pattern:
    try:
        return re.compile(regex)
    except re.error as e:
        raise TemplateConfigError(source, f"{where}: invalid regex {regex!r}: {e}") from e


def _region(source: str, value: Any, where: str) -> Optional[Region]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or len(value) != 4:
        raise TemplateConfigError(source, f"{where}: region must be [x1, y1, x2, y2]")
    x1, y1, x2, y2 = (int(v) for v in value)
    if not (0 <= x1 < x2 <= 1000 and 0 <= y1 < y2 <= 1000):
        raise TemplateConfigError(source, f"{where}: region {value} outside the 0-1000 grid")
    return (x1, y1, x2, y2)


def _parse_rule(source: str, data: Dict[str, Any], where: str) -> ExtractionRule:
    try:
        kind = RuleKind(data.get('kind'))
    except ValueError:
        raise TemplateConfigError(source, f"{where}: unknown rule kind {data.get('kind')!r}")

    labels = tuple(str(label) for label in data.get('labels', ()))
    pattern = _compile(source, data['pattern'], where) if data.get('pattern') else None
    region = _region(source, data.get('region'), where)
    sources = tuple(data.get('sources', ()))
    part = data.get('part')

    if kind is RuleKind.LABEL and not labels:
        raise TemplateConfigError(source, f"{where}: label rule needs labels")
    if kind is RuleKind.PATTERN and pattern is None:
        raise TemplateConfigError(source, f"{where}: pattern rule needs a pattern")
    if kind is RuleKind.POSITIONAL and region is None:
        raise TemplateConfigError(source, f"{where}: positional rule needs a region")
    if kind is RuleKind.DERIVED and not sources:
        raise TemplateConfigError(source, f"{where}: derived rule needs sources")
    if part is not None and part not in NAME_PARTS:
        raise TemplateConfigError(source, f"{where}: part must be one of {NAME_PARTS}")

    return ExtractionRule(
        kind=kind,
        labels=labels,
        label_patterns=tuple(compile_label(label) for label in labels),
        pattern=pattern,
        region=region,
        max_distance=data.get('max_distance'),
        max_tokens=int(data.get('max_tokens', 1)),
        sources=sources,
        part=part,
        joiner=data.get('joiner', ' '),
        confidence=data.get('confidence'),
        prefer=data.get('prefer', 'first')
    )


def _parse_vocabulary(source: str, data: Any, where: str) -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
    if not data:
        return ()
    if not isinstance(data, dict):
        raise TemplateConfigError(source, f"{where}: vocabulary must map canonical values to aliases")
    return tuple(
        (str(canonical), tuple(str(alias) for alias in (aliases or ())))
        for canonical, aliases in data.items()
    )


def _parse_field(source: str, data: Dict[str, Any], template_id: str) -> FieldDescriptor:
    name = data.get('name')
    if not name:
        raise TemplateConfigError(source, f"{template_id}: field without a name")
    where = f"{template_id}.{name}"

    try:
        value_type = ValueType(data.get('type', 'string'))
    except ValueError:
        raise TemplateConfigError(source, f"{where}: unknown type {data.get('type')!r}")

    group = data.get('group', 'document')
    if group not in FIELD_GROUPS:
        raise TemplateConfigError(source, f"{where}: group must be one of {FIELD_GROUPS}")

    vocabulary = _parse_vocabulary(source, data.get('vocabulary'), where)
    if value_type is ValueType.ENUM and not vocabulary:
        raise TemplateConfigError(source, f"{where}: enum field needs a vocabulary")

    return FieldDescriptor(
        name=name,
        rule=_parse_rule(source, data.get('rule') or {}, where),
        required=bool(data.get('required', False)),
        value_type=value_type,
        vocabulary=vocabulary,
        group=group,
        date_formats=tuple(data.get('date_formats', ())),
        past_only=bool(data.get('past_only', False)),
        unit=data.get('unit')
    )


def _parse_anchor(source: str, data: Union[str, Dict[str, Any]], template_id: str) -> Anchor:
    if isinstance(data, str):
        data = {'text': data}
    text = data.get('text')
    regex = data.get('pattern')
    if not text and not regex:
        raise TemplateConfigError(source, f"{template_id}: anchor needs text or pattern")

    where = f"{template_id}.anchor"
    return Anchor(
        text=text or regex,
        pattern=_compile(source, regex, where) if regex else compile_label(text),
        weight=float(data.get('weight', 1.0)),
        region=_region(source, data.get('region'), where)
    )


def parse_template(data: Dict[str, Any], source: str = '<dict>') -> DocumentTemplate:
    """
    Build a DocumentTemplate from its YAML mapping.

    Raises:
        TemplateConfigError: If the mapping is malformed.
    """
    template_id = data.get('id')
    if not template_id:
        raise TemplateConfigError(source, "template without an id")

    fields = tuple(_parse_field(source, f, template_id) for f in data.get('fields') or ())
    if not fields:
        raise TemplateConfigError(source, f"{template_id}: template declares no fields")

    names = [f.name for f in fields]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise TemplateConfigError(source, f"{template_id}: duplicate fields {duplicates}")

    for descriptor in fields:
        unknown = set(descriptor.rule.sources) - set(names)
        if unknown:
            raise TemplateConfigError(
                source, f"{template_id}.{descriptor.name}: unknown sources {sorted(unknown)}"
            )

    name_order = data.get('name_order', 'first_last')
    if name_order not in NAME_ORDERS:
        raise TemplateConfigError(source, f"{template_id}: name_order must be one of {NAME_ORDERS}")

    return DocumentTemplate(
        template_id=template_id,
        version=int(data.get('version', 1)),
        country=data.get('country', ''),
        doc_type=data.get('doc_type', 'id_card'),
        anchors=tuple(_parse_anchor(source, a, template_id) for a in data.get('anchors') or ()),
        fields=fields,
        date_formats=tuple(data.get('date_formats') or ('%m/%d/%Y',)),
        day_first=bool(data.get('day_first', False)),
        name_order=name_order,
        description=data.get('description', '')
    )


class TemplateRegistry:
    """
    Read-only collection of document templates.

    Loaded once and shared by every scan session; templates are never
    mutated after loading.

    Example:
        >>> registry = TemplateRegistry.load()
        >>> registry.fallback.template_id
        'generic-id-v1'
    """

    def __init__(self, templates: Iterable[DocumentTemplate], fallback_id: Optional[str] = None) -> None:
        self._templates: Dict[str, DocumentTemplate] = {}
        for template in templates:
            if template.template_id in self._templates:
                raise TemplateConfigError(
                    '<registry>', f"duplicate template id {template.template_id}"
                )
            self._templates[template.template_id] = template

        self.fallback_id = fallback_id or get_config("classifier.fallback_template", "generic-id-v1")
        if self.fallback_id not in self._templates:
            raise TemplateConfigError('<registry>', f"fallback template {self.fallback_id} not defined")

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None,
             fallback_id: Optional[str] = None) -> 'TemplateRegistry':
        """
        Load templates from YAML.

        Args:
            path: Template file. Defaults to ``paths.templates``.
            fallback_id: Generic template id. Defaults to configuration.

        Returns:
            TemplateRegistry.

        Raises:
            TemplateConfigError: If the file is missing or malformed.
        """
        path = Path(path or get_config("paths.templates"))
        source = str(path)

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise TemplateConfigError(source, f"cannot read file: {e}") from e
        except yaml.YAMLError as e:
            raise TemplateConfigError(source, f"invalid YAML: {e}") from e

        entries = data.get('templates') if isinstance(data, dict) else None
        if not entries:
            raise TemplateConfigError(source, "no templates defined")

        registry = cls((parse_template(entry, source) for entry in entries), fallback_id)
        logger.info(f"Loaded {len(registry)} templates from {path.name}")
        return registry

    @property
    def fallback(self) -> DocumentTemplate:
        return self._templates[self.fallback_id]

    @property
    def candidates(self) -> List[DocumentTemplate]:
        """Templates that take part in classification."""
        return [t for t in self._templates.values() if t.template_id != self.fallback_id]

    def get(self, template_id: str) -> DocumentTemplate:
        return self._templates[template_id]

    def __iter__(self):
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._templates
