"""
Input Handler Module for Identity Extraction System.

This module provides functionality for:
    - Accepting raw captures (bytes, files, data URLs)
    - Decoding and validating image formats
    - Locating and straightening the document in the frame
    - Normalizing images for OCR processing

Supported formats:
    - Images: JPEG, PNG, BMP, TIFF, WEBP

Author: ML Engineering Team
"""

from .capture import RawCapture, decode_capture, canonical_format
from .boundary import BoundaryDetector, BoundaryDetection
from .image_processor import ImageNormalizer, NormalizedImage, GeometricTransform

__all__ = [
    'RawCapture',
    'decode_capture',
    'canonical_format',
    'BoundaryDetector',
    'BoundaryDetection',
    'ImageNormalizer',
    'NormalizedImage',
    'GeometricTransform',
]
