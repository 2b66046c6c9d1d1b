"""
Raw Capture Module.

This module defines the immutable RawCapture handed over by the
acquisition layer (camera widget or file picker) and the decoding step
that turns its bytes into a PIL raster.

Captures are passed by value: the pipeline never reaches into camera
or device state.

Author: ML Engineering Team
"""

import base64
import binascii
import io
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from PIL import Image, UnidentifiedImageError

from config import get_config
from src.utils.logger import get_logger
from src.utils.helpers import get_file_extension, format_file_size
from src.utils.exceptions import DecodeError

# Initialize module logger
logger = get_logger(__name__)

# Spellings that refer to the same container format
FORMAT_ALIASES = {
    'jpg': 'jpeg',
    'tif': 'tiff',
    'image/jpeg': 'jpeg',
    'image/jpg': 'jpeg',
    'image/png': 'png',
    'image/bmp': 'bmp',
    'image/tiff': 'tiff',
    'image/webp': 'webp',
}

DEFAULT_FORMATS = ['jpeg', 'png', 'bmp', 'tiff', 'webp']

DATA_URL_PATTERN = re.compile(
    r'^data:(?P<mime>image/[a-zA-Z0-9.+-]+);base64,(?P<payload>.*)$',
    re.DOTALL
)


def canonical_format(image_format: Optional[str]) -> str:
    """
    Map a format name, extension or MIME type to its canonical name.

    Args:
        image_format: Format as supplied by the caller (e.g. "JPG").

    Returns:
        Lowercase canonical format (e.g. "jpeg"), or "" if unknown.
    """
    if not image_format:
        return ""
    fmt = image_format.strip().lower().lstrip('.')
    return FORMAT_ALIASES.get(fmt, fmt)


@dataclass(frozen=True)
class RawCapture:
    """
    One raw image handed to the pipeline.

    Attributes:
        data: Encoded image bytes exactly as captured.
        image_format: Canonical container format ("jpeg", "png", ...).
        captured_at: Capture timestamp supplied by the acquisition layer.

    Example:
        >>> capture = RawCapture(data=jpeg_bytes, image_format="jpg")
        >>> capture.image_format
        'jpeg'
    """
    data: bytes
    image_format: str
    captured_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        object.__setattr__(self, 'data', bytes(self.data or b''))
        object.__setattr__(self, 'image_format', canonical_format(self.image_format))

    @property
    def size_bytes(self) -> int:
        """Size of the encoded buffer."""
        return len(self.data)

    @classmethod
    def from_data_url(
        cls,
        data_url: str,
        captured_at: Optional[datetime] = None
    ) -> 'RawCapture':
        """
        Build a capture from a ``data:image/...;base64,`` URL.

        This is the form in which browser canvases and file readers
        deliver camera frames and uploads.

        Args:
            data_url: The data URL string.
            captured_at: Optional capture timestamp.

        Returns:
            RawCapture with decoded bytes.

        Raises:
            DecodeError: If the URL is malformed or not base64.
        """
        match = DATA_URL_PATTERN.match((data_url or '').strip())
        if not match:
            raise DecodeError("data-url", "not an image data URL")

        image_format = canonical_format(match.group('mime'))
        try:
            data = base64.b64decode(match.group('payload'), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(image_format, f"invalid base64 payload: {e}") from e

        return cls(
            data=data,
            image_format=image_format,
            captured_at=captured_at or datetime.now()
        )

    @classmethod
    def from_file(cls, filepath: Union[str, Path]) -> 'RawCapture':
        """
        Build a capture from an image file on disk.

        Args:
            filepath: Path to the image file.

        Returns:
            RawCapture using the file extension as format.
        """
        path = Path(filepath)
        return cls(
            data=path.read_bytes(),
            image_format=get_file_extension(path),
            captured_at=datetime.fromtimestamp(path.stat().st_mtime)
        )

    def __repr__(self) -> str:
        return (
            f"RawCapture(format='{self.image_format}', "
            f"size={format_file_size(self.size_bytes)}, "
            f"captured_at={self.captured_at.isoformat()})"
        )


def decode_capture(
    capture: RawCapture,
    supported_formats: Optional[Iterable[str]] = None,
    max_bytes: Optional[int] = None
) -> Image.Image:
    """
    Decode a capture into a fully loaded PIL image.

    Args:
        capture: The raw capture.
        supported_formats: Accepted formats. Defaults to configuration.
        max_bytes: Largest accepted buffer. Defaults to configuration.

    Returns:
        Loaded PIL Image.

    Raises:
        DecodeError: For empty, oversized, unsupported or corrupt input.
    """
    if supported_formats is None:
        supported_formats = get_config("input.supported_formats", DEFAULT_FORMATS)
    if max_bytes is None:
        max_bytes = get_config("input.max_bytes", 20 * 1024 * 1024)

    supported = {canonical_format(f) for f in supported_formats}
    fmt = capture.image_format

    if capture.size_bytes == 0:
        raise DecodeError(fmt, "capture buffer is empty")

    if fmt not in supported:
        raise DecodeError(fmt, f"unsupported format, expected one of {sorted(supported)}")

    if capture.size_bytes > max_bytes:
        raise DecodeError(
            fmt,
            f"capture is {format_file_size(capture.size_bytes)}, "
            f"limit is {format_file_size(max_bytes)}"
        )

    try:
        image = Image.open(io.BytesIO(capture.data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.error(f"Failed to decode {fmt} capture: {e}")
        raise DecodeError(fmt, str(e)) from e

    if image.width <= 0 or image.height <= 0:
        raise DecodeError(fmt, "decoded image has no pixels")

    detected = canonical_format(image.format)
    if detected and detected != fmt:
        logger.warning(f"Capture declared as {fmt} but decoded as {detected}")

    logger.debug(
        f"Decoded {fmt} capture: {image.width}x{image.height} "
        f"mode={image.mode} ({format_file_size(capture.size_bytes)})"
    )
    return image
