import base64

import pytest

from src.input_handler import ImageNormalizer, RawCapture, decode_capture
from src.utils.exceptions import DecodeError, ImageTooSmallError

from conftest import card_png, plain_png


def test_card_boundary_is_found_and_rectified():
    normalized = ImageNormalizer().normalize(RawCapture(card_png(), "png"))

    assert normalized.transform.boundary_found
    assert not normalized.degraded
    assert normalized.transform.corners is not None
    assert abs(normalized.width - 600) <= 12
    assert abs(normalized.height - 378) <= 12
    assert 1.2 <= normalized.aspect_ratio <= 1.8


def test_normalizing_a_canonical_image_is_identity():
    normalizer = ImageNormalizer()
    first = normalizer.normalize(RawCapture(card_png(), "png"))

    second = normalizer.normalize(RawCapture(first.to_bytes("PNG"), "png"))

    assert second.transform.is_identity
    assert second.size == first.size


def test_missing_boundary_falls_back_to_full_frame():
    normalized = ImageNormalizer().normalize(RawCapture(plain_png(800, 500), "png"))

    assert normalized.degraded
    assert not normalized.transform.boundary_found
    assert normalized.size == (800, 500)


def test_implausible_aspect_is_clamped_by_centre_crop():
    normalized = ImageNormalizer().normalize(RawCapture(plain_png(1000, 300), "png"))

    assert normalized.degraded
    assert normalized.transform.crop_box == (230, 0, 770, 300)
    assert normalized.size == (540, 300)
    assert normalized.aspect_ratio <= 1.8


@pytest.mark.parametrize("width, height", [(1, 1), (2, 1)])
def test_frame_too_small_for_a_card_shape_is_rejected(width, height):
    with pytest.raises(ImageTooSmallError) as excinfo:
        ImageNormalizer().normalize(RawCapture(plain_png(width, height), "png"))

    assert excinfo.value.details["width"] == width
    assert excinfo.value.details["height"] == height


def test_empty_capture_is_a_decode_error():
    with pytest.raises(DecodeError) as excinfo:
        ImageNormalizer().normalize(RawCapture(b"", "jpeg"))
    assert excinfo.value.details["reason"] == "capture buffer is empty"


def test_corrupt_bytes_are_a_decode_error():
    with pytest.raises(DecodeError):
        decode_capture(RawCapture(b"not an image at all", "png"))


def test_unsupported_format_is_a_decode_error():
    with pytest.raises(DecodeError) as excinfo:
        decode_capture(RawCapture(card_png(), "gif"))
    assert "unsupported format" in excinfo.value.details["reason"]


def test_format_aliases_are_canonical():
    assert RawCapture(b"x", "JPG").image_format == "jpeg"
    assert RawCapture(b"x", ".tif").image_format == "tiff"


def test_capture_from_data_url():
    payload = card_png()
    url = "data:image/png;base64," + base64.b64encode(payload).decode("ascii")

    capture = RawCapture.from_data_url(url)

    assert capture.image_format == "png"
    assert capture.data == payload


def test_malformed_data_url_is_a_decode_error():
    with pytest.raises(DecodeError):
        RawCapture.from_data_url("data:text/plain;base64,aGVsbG8=")
