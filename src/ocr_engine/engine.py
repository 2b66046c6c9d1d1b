"""
Text Recognition Adapter Module.

This module provides the RecognitionAdapter class that serves as the
unified interface for text recognition. It wraps a pluggable backend and
adds the guarantees the rest of the pipeline relies on:
    - A per-attempt timeout
    - Bounded retries with backoff for transient engine failures
    - Blank token removal and reading order
    - Low-confidence marking (tokens are kept, never dropped)
    - Bounding boxes normalized to a 0-1000 grid

Usage:
    from src.ocr_engine import RecognitionAdapter

    adapter = RecognitionAdapter()
    tokens = await adapter.recognize(normalized)

    for token in tokens:
        print(token.text, token.normalized_bbox)

Author: ML Engineering Team
"""

import asyncio
import time
from dataclasses import replace
from typing import List, Optional, Sequence

import numpy as np

from config import get_config
from src.utils.logger import get_logger
from src.utils.exceptions import RecognitionUnavailableError
from src.input_handler.image_processor import NormalizedImage
from .base import RecognitionBackend
from .ocr_result import BoundingBox, TextToken, reading_order
from .tesseract_backend import TesseractBackend

# Initialize module logger
logger = get_logger(__name__)

# Supported backend engines
SUPPORTED_BACKENDS = ['tesseract', 'easyocr']


class EasyOCRBackend(RecognitionBackend):
    """
    EasyOCR backend (optional ``easyocr`` extra).

    The reader loads its models on first use, which can take several
    seconds; that happens inside the worker thread.
    """

    name = "easyocr"

    def __init__(self) -> None:
        self.languages = get_config("ocr.easyocr.languages", ["en"])
        self.gpu = get_config("ocr.easyocr.gpu", False)
        self._reader = None

    def _get_reader(self):
        if self._reader is None:
            try:
                import easyocr
            except ImportError as e:
                raise RecognitionUnavailableError(
                    self.name, "easyocr is not installed (pip install .[easyocr])"
                ) from e

            logger.info(f"Loading EasyOCR reader (languages={self.languages}, gpu={self.gpu})")
            try:
                self._reader = easyocr.Reader(self.languages, gpu=self.gpu)
            except Exception as e:
                raise RecognitionUnavailableError(self.name, f"reader failed to load: {e}") from e
        return self._reader

    async def recognize(self, image: NormalizedImage) -> List[TextToken]:
        return await asyncio.to_thread(self._recognize_sync, image)

    def _recognize_sync(self, image: NormalizedImage) -> List[TextToken]:
        reader = self._get_reader()
        try:
            results = reader.readtext(np.array(image.image))
        except Exception as e:
            raise RecognitionUnavailableError(self.name, str(e)) from e

        tokens = []
        for bbox, text, conf in results:
            # EasyOCR returns corners as [[x1,y1], [x2,y1], [x2,y2], [x1,y2]]
            tokens.append(TextToken(
                text=text,
                bbox=BoundingBox.from_points(bbox),
                confidence=float(conf),
                index=len(tokens)
            ))

        return tokens


def create_backend(name: Optional[str] = None) -> RecognitionBackend:
    """
    Create the configured recognition backend.

    Args:
        name: Backend name. If None, uses configuration.

    Returns:
        RecognitionBackend instance.
    """
    backend_name = (name or get_config("ocr.engine", "tesseract")).lower()

    # Normalize backend name
    if backend_name == "pytesseract":
        backend_name = "tesseract"

    if backend_name == "tesseract":
        return TesseractBackend()

    if backend_name == "easyocr":
        return EasyOCRBackend()

    logger.warning(f"Unknown backend '{backend_name}', falling back to tesseract")
    return TesseractBackend()


class RecognitionAdapter:
    """
    Recognition front end used by the scan pipeline.

    Only engine unavailability and timeouts are retried. An empty token
    list is a valid result and is returned as is.

    Attributes:
        backend: The active recognition backend
        timeout: Seconds allowed per attempt
        max_retries: Retries after the first attempt
        retry_backoff: Delays before each retry; the last one repeats
        low_confidence_floor: Confidence under which tokens are marked
        normalize_scale: Upper bound of the normalized bbox grid

    Example:
        >>> adapter = RecognitionAdapter(backend=FakeRecognitionBackend(tokens))
        >>> tokens = asyncio.run(adapter.recognize(normalized))
    """

    def __init__(
        self,
        backend: Optional[RecognitionBackend] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[Sequence[float]] = None,
        low_confidence_floor: Optional[float] = None,
        normalize_scale: Optional[int] = None
    ) -> None:
        self.backend = backend or create_backend()
        self.timeout = timeout if timeout is not None else get_config("ocr.timeout_seconds", 10.0)
        self.max_retries = (
            max_retries if max_retries is not None else get_config("ocr.max_retries", 2)
        )
        self.retry_backoff = list(
            retry_backoff if retry_backoff is not None
            else get_config("ocr.retry_backoff", [0.5, 1.5])
        )
        self.low_confidence_floor = (
            low_confidence_floor if low_confidence_floor is not None
            else get_config("ocr.low_confidence_floor", 0.3)
        )
        self.normalize_scale = normalize_scale or get_config("ocr.bbox.scale_factor", 1000)
        self.line_tolerance = get_config("extraction.line_tolerance", 0.6)

        logger.info(f"Recognition adapter initialized with backend: {self.backend.name}")

    def _backoff(self, retry: int) -> float:
        if not self.retry_backoff:
            return 0.0
        return float(self.retry_backoff[min(retry, len(self.retry_backoff) - 1)])

    async def recognize(self, image: NormalizedImage) -> List[TextToken]:
        """
        Recognize tokens on a normalized image.

        Args:
            image: Canonical document image.

        Returns:
            Finalized tokens in reading order.

        Raises:
            RecognitionUnavailableError: When every attempt failed.
        """
        attempts = self.max_retries + 1
        last_error = None
        start_time = time.time()

        for attempt in range(1, attempts + 1):
            try:
                raw = await asyncio.wait_for(self.backend.recognize(image), timeout=self.timeout)
            except asyncio.TimeoutError:
                last_error = f"timed out after {self.timeout}s"
            except RecognitionUnavailableError as e:
                last_error = e.details.get('reason') or e.message
            else:
                tokens = self._finalize(raw, image)
                logger.info(
                    f"Recognition completed: {len(tokens)} tokens, attempt {attempt}/{attempts} "
                    f"({time.time() - start_time:.2f}s)"
                )
                return tokens

            if attempt < attempts:
                delay = self._backoff(attempt - 1)
                logger.warning(
                    f"Recognition attempt {attempt}/{attempts} failed ({last_error}), "
                    f"retrying in {delay}s"
                )
                await asyncio.sleep(delay)

        logger.error(f"Recognition failed after {attempts} attempts: {last_error}")
        raise RecognitionUnavailableError(self.backend.name, last_error, attempts=attempts)

    def _finalize(self, tokens: List[TextToken], image: NormalizedImage) -> List[TextToken]:
        """Drop blanks, clamp confidences, normalize boxes and order tokens."""
        width, height = image.size
        finalized = []

        for token in tokens:
            text = ' '.join(token.text.split())
            if not text:
                continue

            confidence = min(1.0, max(0.0, float(token.confidence)))
            finalized.append(replace(
                token,
                text=text,
                confidence=confidence,
                low_confidence=confidence < self.low_confidence_floor,
                normalized_bbox=token.bbox.normalized(width, height, self.normalize_scale)
            ))

        ordered = reading_order(finalized, self.line_tolerance)
        low = sum(1 for t in ordered if t.low_confidence)
        if low:
            logger.debug(f"{low} of {len(ordered)} tokens below confidence floor")

        return [replace(token, index=i) for i, token in enumerate(ordered)]
