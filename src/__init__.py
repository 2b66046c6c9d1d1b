"""
Identity Extraction System - Source Package.

This package contains all core modules for identity document field
extraction. Each module has a single responsibility.

Modules:
    - input_handler: Capture decoding, boundary detection and normalization
    - ocr_engine: Text tokens with bounding boxes behind a pluggable backend
    - layout_classifier: Document templates and template selection
    - field_extraction: Rule-based field extraction with provenance
    - postprocessor: Normalization, validation and scan status
    - session: Per-capture state machine and pipeline wiring
    - utils: Logging, exceptions and helpers

Architecture:
    Capture → Normalize → Recognize → Classify → Extract → Validate
                                                              ↓
                                                         ScanResult
"""

__version__ = "1.0.0"
__author__ = "ML Engineering Team"

__all__ = [
    'input_handler',
    'ocr_engine',
    'layout_classifier',
    'field_extraction',
    'postprocessor',
    'session',
    'utils'
]
