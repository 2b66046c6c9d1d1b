"""
Field Extraction Module for Identity Extraction System.

This module applies template extraction rules to recognized tokens:
    - Label-anchored, pattern-anchored, positional and derived rules
    - Character-span provenance for every raw value
    - Priority-based resolution of overlapping claims

Author: ML Engineering Team
"""

from .extraction_result import (
    ExtractedField,
    FieldIssue,
    ScanResult,
    ScanStatus,
    TokenRef,
)
from .extractor import FieldExtractor, Candidate

__all__ = [
    'ExtractedField',
    'FieldIssue',
    'ScanResult',
    'ScanStatus',
    'TokenRef',
    'FieldExtractor',
    'Candidate',
]
