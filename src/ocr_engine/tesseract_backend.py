"""
Tesseract OCR Backend.

This module provides text recognition using Tesseract (pytesseract).
It extracts word tokens and bounding boxes from the canonical card image.

Features:
    - Word-level bounding box extraction
    - Confidence scores for each word
    - Configurable Tesseract parameters
    - Orientation and script detection (OSD)

Tesseract is a blocking subprocess call, so recognition runs in a
worker thread and never blocks the event loop.

Requirements:
    - Tesseract OCR installed on the system
    - pytesseract Python package

Author: ML Engineering Team
"""

import asyncio
import time
from typing import Any, Dict, List

import pytesseract
from PIL import Image

from config import get_config
from src.utils.logger import get_logger
from src.utils.exceptions import RecognitionUnavailableError
from src.input_handler.image_processor import NormalizedImage
from .base import RecognitionBackend
from .ocr_result import BoundingBox, TextToken

# Initialize module logger
logger = get_logger(__name__)


class TesseractBackend(RecognitionBackend):
    """
    Tesseract recognition backend implementation.

    Tesseract must be installed on the system for this to work. The
    installation is checked on first use rather than at construction so
    that a missing binary surfaces as a retryable recognition failure.

    Attributes:
        language: Tesseract language code (e.g., "eng")
        psm: Page Segmentation Mode (1-13)
        oem: OCR Engine Mode (0-3)
        extra_config: Additional Tesseract configuration

    Example:
        >>> backend = TesseractBackend()
        >>> tokens = await backend.recognize(normalized)
        >>> print(f"Found {len(tokens)} tokens")
    """

    name = "tesseract"

    def __init__(self) -> None:
        """Initialize the Tesseract backend with configuration."""
        self.language = get_config("ocr.tesseract.lang", "eng")
        self.psm = get_config("ocr.tesseract.psm", 11)
        self.oem = get_config("ocr.tesseract.oem", 3)
        self.extra_config = get_config("ocr.tesseract.config", "")
        self.timeout = get_config("ocr.timeout_seconds", 10.0)
        self._version = None

        logger.debug(
            f"TesseractBackend initialized (lang={self.language}, "
            f"psm={self.psm}, oem={self.oem})"
        )

    def _check_dependencies(self) -> None:
        """
        Check if the Tesseract binary is available.

        Raises:
            RecognitionUnavailableError: If Tesseract is not installed.
        """
        if self._version is not None:
            return

        try:
            self._version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError as e:
            raise RecognitionUnavailableError(
                self.name, f"Tesseract OCR not installed or not in PATH: {e}"
            ) from e

        logger.info(f"Tesseract version: {self._version}")

    def _build_config(self) -> str:
        """
        Build Tesseract configuration string.

        Returns:
            Configuration string for Tesseract.
        """
        config_parts = [
            f"--psm {self.psm}",
            f"--oem {self.oem}"
        ]

        if self.extra_config:
            config_parts.append(self.extra_config)

        return ' '.join(config_parts)

    async def recognize(self, image: NormalizedImage) -> List[TextToken]:
        """
        Recognize word tokens on the canonical image.

        Args:
            image: Normalized document image.

        Returns:
            Tokens in Tesseract's output order.

        Raises:
            RecognitionUnavailableError: If Tesseract cannot be run.
        """
        return await asyncio.to_thread(self._recognize_sync, image.image)

    def _recognize_sync(self, image: Image.Image) -> List[TextToken]:
        self._check_dependencies()
        start_time = time.time()

        if image.mode != 'RGB':
            image = image.convert('RGB')

        config = self._build_config()
        logger.debug(f"Running Tesseract OCR (config: {config})")

        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.language,
                config=config,
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout
            )
        except (pytesseract.TesseractError, RuntimeError) as e:
            # pytesseract reports its own timeout as RuntimeError
            logger.error(f"Tesseract invocation failed: {e}")
            raise RecognitionUnavailableError(self.name, str(e)) from e

        tokens = self._parse_tesseract_output(data)

        logger.info(
            f"Tesseract completed: {len(tokens)} tokens "
            f"({time.time() - start_time:.2f}s)"
        )
        return tokens

    def _parse_tesseract_output(self, data: Dict[str, List]) -> List[TextToken]:
        """
        Parse Tesseract output into TextToken objects.

        Args:
            data: Dictionary output from image_to_data.

        Returns:
            List of TextToken objects.
        """
        tokens = []

        for i, text in enumerate(data['text']):
            # Skip empty text
            if not text or not text.strip():
                continue

            # Tesseract returns -1 for non-word elements
            conf = float(data['conf'][i])
            if conf < 0:
                continue

            x, y = data['left'][i], data['top'][i]
            w, h = data['width'][i], data['height'][i]

            # Skip invalid boxes
            if w <= 0 or h <= 0:
                continue

            tokens.append(TextToken(
                text=text.strip(),
                bbox=BoundingBox.from_rect(x, y, x + w, y + h),
                confidence=conf / 100.0,
                script=self.language,
                index=len(tokens)
            ))

        return tokens

    def detect_orientation(self, image: Image.Image) -> Dict[str, Any]:
        """
        Detect image orientation and script.

        Args:
            image: PIL Image to analyze.

        Returns:
            Dictionary with orientation, rotation, and confidence.
        """
        try:
            self._check_dependencies()
            osd = pytesseract.image_to_osd(image, output_type=pytesseract.Output.DICT)
            return {
                'orientation': osd.get('orientation', 0),
                'rotate': osd.get('rotate', 0),
                'orientation_conf': osd.get('orientation_conf', 0),
                'script': osd.get('script', 'unknown'),
                'script_conf': osd.get('script_conf', 0)
            }
        except (RecognitionUnavailableError, pytesseract.TesseractError) as e:
            logger.debug(f"Orientation detection failed: {e}")
            return {
                'orientation': 0,
                'rotate': 0,
                'orientation_conf': 0,
                'script': 'unknown',
                'script_conf': 0
            }

    def osd_rotation(self, image: Image.Image) -> int:
        """Clockwise rotation that makes the text upright, for the normalizer."""
        return int(self.detect_orientation(image)['rotate'])
