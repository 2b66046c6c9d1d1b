"""
OCR Engine Module for Identity Extraction System.

This module provides text recognition capabilities:
    - Word tokens with four-corner bounding boxes
    - Confidence scores and low-confidence marking
    - Bounding boxes normalized to a 0-1000 grid
    - Timeouts and bounded retries around the engine

Supported Backends:
    - Tesseract (pytesseract) - default
    - EasyOCR (optional extra)

Author: ML Engineering Team
"""

from .ocr_result import BoundingBox, TextToken, TextRun, group_lines, reading_order, build_lines
from .base import RecognitionBackend
from .tesseract_backend import TesseractBackend
from .engine import RecognitionAdapter, EasyOCRBackend, create_backend

__all__ = [
    'BoundingBox',
    'TextToken',
    'group_lines',
    'reading_order',
    'TextRun',
    'build_lines',
    'RecognitionBackend',
    'TesseractBackend',
    'EasyOCRBackend',
    'RecognitionAdapter',
    'create_backend',
]
