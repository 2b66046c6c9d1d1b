"""
Post-Processing Module for Identity Extraction System.

This module normalizes and validates extracted fields:
    - Date, name, enumeration, number and text normalization
    - Shape and chronology validation
    - Aggregate scan status

Author: ML Engineering Team
"""

from .processor import PostProcessor
from .normalizers import (
    DateNormalizer,
    EnumNormalizer,
    NameNormalizer,
    NumberNormalizer,
    PersonName,
    TextNormalizer,
)
from .validators import ChronologyValidator, ConfidenceValidator, ShapeValidator

__all__ = [
    'PostProcessor',
    'DateNormalizer',
    'EnumNormalizer',
    'NameNormalizer',
    'NumberNormalizer',
    'PersonName',
    'TextNormalizer',
    'ChronologyValidator',
    'ConfidenceValidator',
    'ShapeValidator',
]
