import asyncio
import io
from dataclasses import replace
from datetime import date
from typing import List, Optional, Sequence, Tuple

import pytest
from PIL import Image, ImageDraw

from src.input_handler import GeometricTransform, NormalizedImage
from src.layout_classifier import TemplateRegistry
from src.ocr_engine import BoundingBox, RecognitionAdapter, RecognitionBackend, TextToken
from src.ocr_engine.ocr_result import reading_order
from src.postprocessor import PostProcessor
from src.session import ScanPipeline
from src.utils.exceptions import RecognitionUnavailableError

TODAY = date(2026, 10, 19)

# (text, x1, y1, x2, y2) on the 0-1000 grid
Row = Tuple[str, int, int, int, int]

DRIVER_LICENSE: List[Row] = [
    ("USA", 40, 40, 120, 80),
    ("DRIVER", 300, 40, 420, 80),
    ("LICENSE", 430, 40, 560, 80),
    ("DL", 300, 150, 340, 190),
    ("D1234567", 350, 150, 500, 190),
    ("LN", 300, 220, 340, 260),
    ("DOE", 350, 220, 430, 260),
    ("FN", 300, 290, 340, 330),
    ("JOHN", 350, 290, 440, 330),
    ("MICHAEL", 450, 290, 580, 330),
    ("ADDRESS", 300, 360, 420, 400),
    ("123", 430, 360, 480, 400),
    ("MAIN", 490, 360, 560, 400),
    ("ST", 570, 360, 610, 400),
    ("SPRINGFIELD,", 300, 430, 480, 470),
    ("IL", 490, 430, 530, 470),
    ("62701", 540, 430, 640, 470),
    ("DOB", 300, 500, 360, 540),
    ("03/15/1985", 370, 500, 540, 540),
    ("ISS", 300, 570, 350, 610),
    ("03/15/2023", 360, 570, 530, 610),
    ("EXP", 600, 570, 650, 610),
    ("03/15/2031", 660, 570, 830, 610),
    ("SEX", 300, 640, 350, 680),
    ("M", 360, 640, 380, 680),
    ("HGT", 420, 640, 470, 680),
    ("5'-10\"", 480, 640, 560, 680),
    ("WGT", 600, 640, 650, 680),
    ("180", 660, 640, 710, 680),
    ("lb", 720, 640, 750, 680),
    ("EYES", 300, 710, 370, 750),
    ("BRO", 380, 710, 440, 750),
]

PASSPORT: List[Row] = [
    ("PASSPORT", 100, 50, 300, 90),
    ("P<UTOERIKSSON<<ANNA<MARIA<<<<<<<<<<<<<<<<<<<", 20, 800, 980, 840),
    ("L898902C36UTO7408122F3404159ZE184226B<<<<<10", 20, 880, 980, 920),
]

GENERIC: List[Row] = [
    ("NAME", 100, 100, 180, 140),
    ("JANE", 190, 100, 260, 140),
    ("DOE", 270, 100, 330, 140),
    ("DOB", 100, 200, 160, 240),
    ("1990-01-02", 170, 200, 340, 240),
    ("ABC123456", 100, 300, 300, 340),
]


def make_token(text: str, x1: float, y1: float, x2: float, y2: float,
               confidence: float = 0.95, index: int = 0) -> TextToken:
    """Token whose pixel box and normalized box coincide (1000x1000 image)."""
    return TextToken(
        text=text,
        bbox=BoundingBox.from_rect(x1, y1, x2, y2),
        confidence=confidence,
        index=index,
        normalized_bbox=(int(x1), int(y1), int(x2), int(y2)),
        low_confidence=confidence < 0.3
    )


def make_tokens(rows: Sequence[Row], confidence: float = 0.95) -> List[TextToken]:
    """Tokens in reading order with reading-order indices."""
    tokens = [make_token(text, x1, y1, x2, y2, confidence) for text, x1, y1, x2, y2 in rows]
    return [replace(t, index=i) for i, t in enumerate(reading_order(tokens))]


def with_rows(rows: Sequence[Row], **changes: str) -> List[Row]:
    """Copy of a layout with some token texts replaced."""
    return [(changes.get(text, text), x1, y1, x2, y2) for text, x1, y1, x2, y2 in rows]


def card_png(width: int = 900, height: int = 700) -> bytes:
    """Dark frame with a light card-shaped rectangle in the middle."""
    image = Image.new("RGB", (width, height), (40, 40, 40))
    draw = ImageDraw.Draw(image)
    draw.rectangle((150, 160, 750, 538), fill=(255, 255, 255))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def plain_png(width: int, height: int, color: Tuple[int, int, int] = (200, 200, 200)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def blank_image(width: int = 1000, height: int = 630) -> NormalizedImage:
    return NormalizedImage(
        image=Image.new("RGB", (width, height), (255, 255, 255)),
        transform=GeometricTransform(source_size=(width, height), output_size=(width, height)),
        source_format="png"
    )


class FakeRecognitionBackend(RecognitionBackend):
    """
    Scripted recognition engine.

    Layout rows are on the 0-1000 grid and are scaled to the image.
    The first ``hangs`` calls never return, the next ``failures`` calls
    raise RecognitionUnavailableError. With ``gated`` set, every call
    waits until ``release()``.
    """

    name = "fake"

    def __init__(self, rows: Sequence[Row] = (), failures: int = 0, hangs: int = 0,
                 gated: bool = False, confidence: float = 0.95) -> None:
        self.rows = list(rows)
        self.failures = failures
        self.hangs = hangs
        self.gated = gated
        self.confidence = confidence
        self.calls = 0
        self.waiting = 0
        self._gate: Optional[asyncio.Event] = None

    def release(self) -> None:
        self._open_gate().set()

    def _open_gate(self) -> asyncio.Event:
        if self._gate is None:
            self._gate = asyncio.Event()
        return self._gate

    async def recognize(self, image: NormalizedImage) -> List[TextToken]:
        self.calls += 1
        call = self.calls

        if self.gated:
            self.waiting += 1
            await self._open_gate().wait()

        if call <= self.hangs:
            await asyncio.sleep(3600)
        if call <= self.hangs + self.failures:
            raise RecognitionUnavailableError(self.name, "scripted failure")

        width, height = image.size
        return [
            TextToken(
                text=text,
                bbox=BoundingBox.from_rect(
                    x1 * width / 1000, y1 * height / 1000,
                    x2 * width / 1000, y2 * height / 1000
                ),
                confidence=self.confidence
            )
            for text, x1, y1, x2, y2 in self.rows
        ]


def make_pipeline(registry: TemplateRegistry, backend: RecognitionBackend,
                  timeout: float = 2.0) -> ScanPipeline:
    return ScanPipeline(
        registry,
        adapter=RecognitionAdapter(backend=backend, timeout=timeout, retry_backoff=[0.0, 0.0]),
        postprocessor=PostProcessor(today=TODAY)
    )


@pytest.fixture(scope="session")
def registry() -> TemplateRegistry:
    return TemplateRegistry.load()


@pytest.fixture
def driver_license(registry):
    return registry.get("us-driver-license-v1")


@pytest.fixture
def passport(registry):
    return registry.get("passport-td3-v1")


@pytest.fixture
def generic(registry):
    return registry.get("generic-id-v1")
