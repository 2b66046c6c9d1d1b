"""
Scan Pipeline Module.

This module wires the processing stages together:

    normalize -> recognize -> classify -> extract -> validate

Each stage is a separate method so the session manager can commit state
between them. ``run`` executes all stages in one call.

Author: ML Engineering Team
"""

import time
from datetime import date
from typing import Dict, List, Optional

from config import get_config
from src.utils.logger import get_logger
from src.utils.exceptions import IDExtractionError
from src.input_handler import ImageNormalizer, NormalizedImage, RawCapture
from src.ocr_engine import (
    RecognitionAdapter,
    RecognitionBackend,
    TesseractBackend,
    TextToken,
    create_backend,
)
from src.layout_classifier import Classification, LayoutClassifier, TemplateRegistry
from src.field_extraction import ExtractedField, FieldExtractor, ScanResult, ScanStatus
from src.postprocessor import PostProcessor

# Initialize module logger
logger = get_logger(__name__)


class ScanPipeline:
    """
    The identity extraction stages, bound to one template registry.

    Stage objects are stateless between scans, so one pipeline can serve
    many sessions.

    Attributes:
        registry: Shared read-only templates
        normalizer: ImageNormalizer instance
        adapter: RecognitionAdapter instance
        classifier: LayoutClassifier instance
        extractor: FieldExtractor instance
        postprocessor: PostProcessor instance

    Example:
        >>> pipeline = ScanPipeline.from_config()
        >>> result = asyncio.run(pipeline.run(RawCapture.from_file("card.jpg")))
        >>> result.status
        <ScanStatus.COMPLETE: 'Complete'>
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        backend: Optional[RecognitionBackend] = None,
        normalizer: Optional[ImageNormalizer] = None,
        adapter: Optional[RecognitionAdapter] = None,
        classifier: Optional[LayoutClassifier] = None,
        extractor: Optional[FieldExtractor] = None,
        postprocessor: Optional[PostProcessor] = None
    ) -> None:
        self.registry = registry
        self.normalizer = normalizer or ImageNormalizer()
        self.adapter = adapter or RecognitionAdapter(backend=backend)
        self.classifier = classifier or LayoutClassifier(registry)
        self.extractor = extractor or FieldExtractor()
        self.postprocessor = postprocessor or PostProcessor()

        logger.info(
            f"ScanPipeline initialized ({len(registry)} templates, "
            f"backend={self.adapter.backend.name})"
        )

    @classmethod
    def from_config(
        cls,
        engine: Optional[str] = None,
        registry: Optional[TemplateRegistry] = None
    ) -> 'ScanPipeline':
        """
        Build a pipeline from configuration.

        Args:
            engine: Recognition backend name. Defaults to ``ocr.engine``.
            registry: Templates. Loaded from ``paths.templates`` if omitted.

        Returns:
            ScanPipeline.
        """
        registry = registry or TemplateRegistry.load()
        backend = create_backend(engine)

        osd_detector = None
        if get_config("input.orientation.use_osd", False) and isinstance(backend, TesseractBackend):
            osd_detector = backend.osd_rotation

        return cls(
            registry=registry,
            normalizer=ImageNormalizer(osd_detector=osd_detector),
            adapter=RecognitionAdapter(backend=backend)
        )

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def normalize(self, capture: RawCapture) -> NormalizedImage:
        return self.normalizer.normalize(capture)

    async def recognize(self, image: NormalizedImage) -> List[TextToken]:
        return await self.adapter.recognize(image)

    def classify(self, tokens: List[TextToken]) -> Classification:
        return self.classifier.classify_or_fallback(tokens)

    def extract(self, tokens: List[TextToken], classification: Classification) -> Dict[str, ExtractedField]:
        return self.extractor.extract(tokens, classification.template)

    def validate(
        self,
        fields: Dict[str, ExtractedField],
        classification: Classification,
        tokens: List[TextToken],
        image: NormalizedImage,
        today: Optional[date] = None
    ) -> ScanResult:
        return self.postprocessor.process(
            fields,
            classification.template,
            token_count=len(tokens),
            degraded=image.degraded,
            fallback=classification.fallback,
            today=today
        )

    def failed_result(self, error: Exception) -> ScanResult:
        """
        Failed result for a fatal error, on the generic template.

        Every field is present in the result and marked NotFound.
        """
        message = str(error) if isinstance(error, IDExtractionError) else f"Unexpected error: {error}"
        return ScanResult.empty(self.registry.fallback, status=ScanStatus.FAILED, errors=[message])

    async def run(self, capture: RawCapture, today: Optional[date] = None) -> ScanResult:
        """
        Run every stage on one capture.

        Fatal errors (decode failure, recognition unavailable) and any
        unexpected stage error become a Failed result; nothing is raised.

        Args:
            capture: Raw capture.
            today: Reference date for chronology checks.

        Returns:
            ScanResult.
        """
        timings: Dict[str, float] = {}
        try:
            start = time.perf_counter()
            image = self.normalize(capture)
            timings['normalize'] = time.perf_counter() - start

            start = time.perf_counter()
            tokens = await self.recognize(image)
            timings['recognize'] = time.perf_counter() - start

            start = time.perf_counter()
            classification = self.classify(tokens)
            fields = self.extract(tokens, classification)
            timings['extract'] = time.perf_counter() - start

            start = time.perf_counter()
            result = self.validate(fields, classification, tokens, image, today)
            timings['validate'] = time.perf_counter() - start
        except IDExtractionError as e:
            logger.error(f"Scan failed: {e}")
            result = self.failed_result(e)
        except Exception as e:
            logger.exception("Scan failed unexpectedly")
            result = self.failed_result(e)

        result.timings.update(timings)
        return result
