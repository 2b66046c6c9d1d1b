import asyncio
import sys
import types

import pytest

from src.ocr_engine import (
    BoundingBox,
    EasyOCRBackend,
    RecognitionAdapter,
    TextToken,
    build_lines,
    create_backend,
)
from src.ocr_engine.tesseract_backend import TesseractBackend
from src.utils.exceptions import RecognitionUnavailableError

from conftest import DRIVER_LICENSE, FakeRecognitionBackend, blank_image


def _recognize(backend, **kwargs):
    kwargs.setdefault("retry_backoff", [0.0, 0.0])
    adapter = RecognitionAdapter(backend=backend, **kwargs)
    return asyncio.run(adapter.recognize(blank_image()))


def _summary(tokens):
    return [(t.index, t.text, t.normalized_bbox, t.confidence) for t in tokens]


def test_retries_are_transparent():
    clean = _recognize(FakeRecognitionBackend(DRIVER_LICENSE))
    flaky_backend = FakeRecognitionBackend(DRIVER_LICENSE, failures=2)

    flaky = _recognize(flaky_backend, max_retries=2)

    assert flaky_backend.calls == 3
    assert _summary(flaky) == _summary(clean)


def test_timeouts_are_retried():
    backend = FakeRecognitionBackend(DRIVER_LICENSE, hangs=1)

    tokens = _recognize(backend, timeout=0.05, max_retries=1)

    assert backend.calls == 2
    assert len(tokens) == len(DRIVER_LICENSE)


def test_exhausted_retries_raise_unavailable():
    backend = FakeRecognitionBackend(DRIVER_LICENSE, failures=10)

    with pytest.raises(RecognitionUnavailableError) as excinfo:
        _recognize(backend, max_retries=2)

    assert backend.calls == 3
    assert excinfo.value.details["attempts"] == 3


def test_empty_result_is_valid():
    assert _recognize(FakeRecognitionBackend([])) == []


def test_tokens_are_cleaned_and_normalized():
    class RawBackend(FakeRecognitionBackend):
        async def recognize(self, image):
            return [
                TextToken("  ", BoundingBox.from_rect(10, 10, 50, 30), 0.9),
                TextToken("SECOND", BoundingBox.from_rect(100, 300, 300, 340), 1.7),
                TextToken("FIRST  LINE", BoundingBox.from_rect(100, 100, 300, 140), 0.2),
            ]

    tokens = _recognize(RawBackend(), low_confidence_floor=0.3)

    assert [t.text for t in tokens] == ["FIRST LINE", "SECOND"]
    assert [t.index for t in tokens] == [0, 1]
    assert tokens[0].low_confidence
    assert not tokens[1].low_confidence
    assert tokens[1].confidence == 1.0
    assert tokens[0].normalized_bbox == (100, 158, 300, 222)


def test_lines_are_grouped_by_vertical_overlap():
    tokens = _recognize(FakeRecognitionBackend(DRIVER_LICENSE))
    lines = build_lines(tokens)

    assert lines[0].text == "USA DRIVER LICENSE"
    assert lines[1].text == "DL D1234567"
    assert lines[-1].text == "EYES BRO"


def test_unknown_backend_name_falls_back_to_tesseract():
    assert isinstance(create_backend("no-such-engine"), TesseractBackend)


def test_tesseract_output_skips_blanks_and_non_words():
    data = {
        "text": ["", "DOB", "  ", "03/15/1985", "noise"],
        "conf": [-1, 96, 50, "91.5", -1],
        "left": [0, 10, 0, 60, 5],
        "top": [0, 20, 0, 20, 5],
        "width": [0, 40, 0, 100, 10],
        "height": [0, 15, 0, 15, 10],
    }

    tokens = TesseractBackend()._parse_tesseract_output(data)

    assert [t.text for t in tokens] == ["DOB", "03/15/1985"]
    assert tokens[0].confidence == pytest.approx(0.96)
    assert tokens[1].confidence == pytest.approx(0.915)
    assert tokens[1].bbox.x2 == 160


class FlakyReader:
    """EasyOCR reader stand-in whose first ``failures`` calls raise."""

    def __init__(self, failures=1):
        self.failures = failures
        self.calls = 0

    def readtext(self, pixels):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("model server refused connection")
        return [([[10, 20], [50, 20], [50, 35], [10, 35]], "DOB", 0.9)]


def test_easyocr_read_failures_are_retried():
    backend = EasyOCRBackend()
    backend._reader = FlakyReader(failures=1)

    tokens = _recognize(backend, max_retries=1)

    assert backend._reader.calls == 2
    assert [t.text for t in tokens] == ["DOB"]


def test_easyocr_reader_load_failure_is_unavailable(monkeypatch):
    def broken_reader(languages, gpu=False):
        raise OSError("model download failed")

    monkeypatch.setitem(sys.modules, "easyocr", types.SimpleNamespace(Reader=broken_reader))

    with pytest.raises(RecognitionUnavailableError) as excinfo:
        _recognize(EasyOCRBackend(), max_retries=1)

    assert excinfo.value.details["attempts"] == 2
    assert "model download failed" in excinfo.value.details["reason"]
