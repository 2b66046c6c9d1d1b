"""
Layout Classifier Module for Identity Extraction System.

This module provides:
    - Versioned, immutable document templates loaded from YAML
    - Template scoring from anchors and required-field matches
    - Fallback to a generic template when no layout is recognized

Author: ML Engineering Team
"""

from .templates import (
    DocumentTemplate,
    FieldDescriptor,
    ExtractionRule,
    Anchor,
    RuleKind,
    ValueType,
    TemplateRegistry,
    parse_template,
)
from .classifier import LayoutClassifier, Classification, TemplateScore

__all__ = [
    'DocumentTemplate',
    'FieldDescriptor',
    'ExtractionRule',
    'Anchor',
    'RuleKind',
    'ValueType',
    'TemplateRegistry',
    'parse_template',
    'LayoutClassifier',
    'Classification',
    'TemplateScore',
]
