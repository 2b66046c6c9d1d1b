"""
Image Normalizer Module.

This module turns a raw capture into the canonical document raster the
rest of the pipeline works on:
    - Decoding and format validation
    - EXIF orientation and RGB conversion
    - Resolution normalization
    - Document boundary detection and perspective correction
    - Text-line orientation correction
    - Aspect ratio clamping
    - Contrast enhancement for OCR

The transform is pure: re-normalizing an already canonical image yields
an identity geometric transform and the same pixel size.

Author: ML Engineering Team
"""

import io
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageEnhance, ImageOps

from config import get_config
from src.utils.logger import get_logger
from src.utils.exceptions import BoundaryNotFoundError, ImageTooSmallError
from .boundary import BoundaryDetector
from .capture import RawCapture, decode_capture

# Initialize module logger
logger = get_logger(__name__)

EXIF_ORIENTATION_TAG = 0x0112


@dataclass
class GeometricTransform:
    """
    Record of every geometric change applied during normalization.

    Attributes:
        source_size: (width, height) of the decoded capture.
        output_size: (width, height) of the canonical image.
        scale: Downscale factor applied before boundary detection.
        corners: Source quad (tl, tr, br, bl) when a perspective warp
            was applied, else None.
        rotation: Counter-clockwise rotation in degrees (0, 90, 180, 270).
        crop_box: (left, top, right, bottom) of the aspect clamp, if any.
        exif_transposed: Whether EXIF orientation was applied.
        boundary_found: Whether a document boundary was detected.
        degraded: True when no boundary was found and the full frame
            was used instead.
    """
    source_size: Tuple[int, int]
    output_size: Tuple[int, int] = (0, 0)
    scale: float = 1.0
    corners: Optional[Tuple[Tuple[float, float], ...]] = None
    rotation: int = 0
    crop_box: Optional[Tuple[int, int, int, int]] = None
    exif_transposed: bool = False
    boundary_found: bool = False
    degraded: bool = False

    @property
    def is_identity(self) -> bool:
        """True when the output pixels are geometrically the input pixels."""
        return (
            self.scale == 1.0
            and self.corners is None
            and self.rotation == 0
            and self.crop_box is None
            and not self.exif_transposed
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_size': list(self.source_size),
            'output_size': list(self.output_size),
            'scale': round(self.scale, 4),
            'corners': [list(c) for c in self.corners] if self.corners else None,
            'rotation': self.rotation,
            'crop_box': list(self.crop_box) if self.crop_box else None,
            'exif_transposed': self.exif_transposed,
            'boundary_found': self.boundary_found,
            'degraded': self.degraded,
        }


@dataclass
class NormalizedImage:
    """
    Canonical document raster handed to text recognition.

    Attributes:
        image: RGB PIL image, straightened and cropped to the document.
        transform: Geometric record of how it was derived.
        source_format: Format of the capture it came from.
    """
    image: Image.Image
    transform: GeometricTransform
    source_format: str = ""

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    @property
    def aspect_ratio(self) -> float:
        """Long side over short side."""
        return max(self.width, self.height) / min(self.width, self.height)

    @property
    def degraded(self) -> bool:
        return self.transform.degraded

    def to_bytes(self, image_format: str = 'PNG') -> bytes:
        """Encode the canonical image, e.g. to feed it back as a capture."""
        buffer = io.BytesIO()
        self.image.save(buffer, format=image_format)
        return buffer.getvalue()


class ImageNormalizer:
    """
    Normalizer for identity document photographs.

    Handles decoding, straightening and enhancement so that every
    capture reaches recognition as an upright, tightly cropped card.

    Attributes:
        max_width: Maximum image width in pixels
        max_height: Maximum image height in pixels
        auto_orient: Whether to apply EXIF orientation
        enhance_contrast: Whether to apply autocontrast
        detect_boundary: Whether to look for the card edges
        correct_orientation: Whether to fix sideways text

    Example:
        >>> normalizer = ImageNormalizer()
        >>> normalized = normalizer.normalize(capture)
        >>> normalized.transform.degraded
        False
    """

    def __init__(
        self,
        boundary_detector: Optional[BoundaryDetector] = None,
        osd_detector: Optional[Callable[[Image.Image], int]] = None,
        aspect_min: Optional[float] = None,
        aspect_max: Optional[float] = None
    ) -> None:
        """
        Initialize the normalizer with configuration.

        Args:
            boundary_detector: Detector to use. Built from configuration
                when omitted.
            osd_detector: Optional callable returning the clockwise
                rotation that makes the text upright (0, 90, 180, 270). Used after
                projection-profile correction to catch upside-down cards.
            aspect_min: Smallest accepted long/short side ratio.
            aspect_max: Largest accepted long/short side ratio.
        """
        self.max_width = get_config("input.image.max_width", 2400)
        self.max_height = get_config("input.image.max_height", 2400)
        self.min_width = get_config("input.image.min_width", 300)
        self.min_height = get_config("input.image.min_height", 200)
        self.auto_orient = get_config("input.image.auto_orient", True)
        self.enhance_contrast = get_config("input.image.enhance_contrast", True)
        self.sharpen = get_config("input.image.sharpen", False)

        self.detect_boundary = get_config("input.boundary.enabled", True)
        self.correct_orientation = get_config("input.orientation.enabled", True)
        self.min_profile_ratio = get_config("input.orientation.min_profile_ratio", 1.5)

        self.aspect_min = aspect_min or get_config("input.aspect_ratio.min", 1.2)
        self.aspect_max = aspect_max or get_config("input.aspect_ratio.max", 1.8)

        self.boundary_detector = boundary_detector or BoundaryDetector(
            aspect_min=self.aspect_min,
            aspect_max=self.aspect_max
        )
        self.osd_detector = osd_detector

        logger.debug(
            f"ImageNormalizer initialized (max_size={self.max_width}x{self.max_height}, "
            f"aspect={self.aspect_min}-{self.aspect_max})"
        )

    def normalize(self, capture: RawCapture) -> NormalizedImage:
        """
        Normalize a capture into a canonical document image.

        Processing steps:
            1. Decode and validate the capture
            2. Fix orientation from EXIF data
            3. Convert to RGB
            4. Resize if too large
            5. Locate and rectify the document (full frame fallback)
            6. Rotate sideways text upright
            7. Clamp the aspect ratio
            8. Enhance contrast (optional)

        Args:
            capture: Raw capture from the acquisition layer.

        Returns:
            NormalizedImage with its geometric transform.

        Raises:
            DecodeError: If the capture cannot be decoded.
            ImageTooSmallError: If the frame cannot reach a card aspect ratio.
        """
        image = decode_capture(capture)
        transform = GeometricTransform(source_size=image.size)

        # Step 1: Fix orientation from EXIF
        if self.auto_orient:
            image = self._fix_orientation(image, transform)

        # Step 2: Convert to RGB
        image = self._convert_to_rgb(image)

        # Step 3: Resize if too large
        image = self._resize_if_needed(image, transform)

        # Step 4: Find the card in the frame
        if self.detect_boundary:
            image = self._locate_document(image, transform)
        else:
            transform.degraded = True

        # Step 5: Upright text
        if self.correct_orientation:
            image = self._orient_text(image, transform)

        # Step 6: Keep the aspect ratio plausible
        image = self._clamp_aspect(image, transform)

        # Step 7: Enhance (optional)
        image = self._enhance_image(image)

        self._validate_size(image)
        transform.output_size = image.size

        logger.info(
            f"Normalized capture: {transform.source_size[0]}x{transform.source_size[1]} -> "
            f"{image.width}x{image.height} (boundary={transform.boundary_found}, "
            f"rotation={transform.rotation}, degraded={transform.degraded})"
        )

        return NormalizedImage(
            image=image,
            transform=transform,
            source_format=capture.image_format
        )

    def _fix_orientation(self, image: Image.Image, transform: GeometricTransform) -> Image.Image:
        """
        Fix image orientation based on EXIF data.

        Phone cameras store rotation in EXIF metadata rather than
        rotating the pixels.
        """
        orientation = image.getexif().get(EXIF_ORIENTATION_TAG, 1)
        if orientation in (None, 1):
            return image

        image = ImageOps.exif_transpose(image)
        transform.exif_transposed = True

        logger.debug(f"Fixed image orientation (EXIF orientation={orientation})")
        return image

    def _convert_to_rgb(self, image: Image.Image) -> Image.Image:
        """
        Convert image to RGB mode.

        Handles various input modes:
            - RGBA / LA: Composite onto white
            - L (grayscale): Convert to RGB
            - P (palette): Convert to RGB
            - CMYK: Convert to RGB
        """
        if image.mode == 'RGB':
            return image

        original_mode = image.mode

        if image.mode in ('RGBA', 'LA') or (image.mode == 'P' and 'transparency' in image.info):
            rgba = image.convert('RGBA')
            background = Image.new('RGB', rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[3])
            image = background
        else:
            image = image.convert('RGB')

        logger.debug(f"Converted image from {original_mode} to RGB")
        return image

    def _resize_if_needed(self, image: Image.Image, transform: GeometricTransform) -> Image.Image:
        """
        Resize image if it exceeds maximum dimensions.

        Maintains aspect ratio during resize.
        """
        width, height = image.size

        if width <= self.max_width and height <= self.max_height:
            return image

        ratio = min(self.max_width / width, self.max_height / height)
        new_width = max(1, int(width * ratio))
        new_height = max(1, int(height * ratio))

        # Use LANCZOS for high-quality downscaling
        image = image.resize((new_width, new_height), Image.Resampling.LANCZOS)
        transform.scale = ratio

        logger.debug(f"Resized image from {width}x{height} to {new_width}x{new_height}")
        return image

    def _locate_document(self, image: Image.Image, transform: GeometricTransform) -> Image.Image:
        """
        Crop and straighten the document, or fall back to the full frame.
        """
        try:
            detection = self.boundary_detector.detect(image)
        except BoundaryNotFoundError as e:
            logger.warning(f"{e.message}, using full frame (degraded)")
            transform.degraded = True
            return image

        transform.boundary_found = True

        if detection.full_frame:
            logger.debug("Frame already cropped to the document, no warp needed")
            return image

        transform.corners = detection.corners
        return self.boundary_detector.rectify(image, detection)

    def _orient_text(self, image: Image.Image, transform: GeometricTransform) -> Image.Image:
        """
        Rotate the image when text lines run vertically.

        Horizontal lines of text make the row ink profile strongly
        periodic while the column profile stays flat. When the column
        profile varies much more than the row profile the text is
        sideways and the image is turned 90 degrees counter-clockwise.
        """
        gray = np.array(image.convert('L'))
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
        ink = binary > 0

        ink_fraction = float(ink.mean())
        if 0.005 <= ink_fraction <= 0.5:
            row_var = float(np.var(ink.mean(axis=1)))
            col_var = float(np.var(ink.mean(axis=0)))

            if row_var > 0 and col_var > self.min_profile_ratio * row_var:
                image = image.rotate(90, expand=True)
                transform.rotation = 90
                logger.debug(
                    f"Rotated sideways text (col_var={col_var:.4f}, row_var={row_var:.4f})"
                )

        if self.osd_detector is not None:
            image = self._apply_osd(image, transform)

        return image

    def _apply_osd(self, image: Image.Image, transform: GeometricTransform) -> Image.Image:
        """Apply the optional orientation detector (upside-down cards)."""
        try:
            clockwise = int(self.osd_detector(image)) % 360
        except Exception as e:
            logger.debug(f"Orientation detection unavailable: {e}")
            return image

        if clockwise == 0:
            return image

        image = image.rotate(-clockwise, expand=True)
        transform.rotation = (transform.rotation - clockwise) % 360
        logger.debug(f"Applied OSD rotation of {clockwise} degrees")
        return image

    def _clamp_aspect(self, image: Image.Image, transform: GeometricTransform) -> Image.Image:
        """
        Centre-crop a frame whose long/short ratio is out of range.

        Only a full-frame fallback can reach this with an implausible
        ratio; detected boundaries are filtered by aspect already.

        Raises:
            ImageTooSmallError: If the frame is too small to crop into
                the aspect range.
        """
        width, height = image.size
        landscape = width >= height
        long_side, short_side = (width, height) if landscape else (height, width)
        ratio = long_side / short_side

        if self.aspect_min <= ratio <= self.aspect_max:
            return image

        if ratio < self.aspect_min:
            # Too square: shorten the short side
            short_side = int(long_side / self.aspect_min)
        else:
            # Too elongated: shorten the long side
            long_side = int(short_side * self.aspect_max)

        new_ratio = long_side / short_side if short_side else 0.0
        if short_side < 1 or not self.aspect_min <= new_ratio <= self.aspect_max:
            raise ImageTooSmallError(
                width, height, f"aspect ratio {ratio:.2f} cannot be cropped into range"
            )

        new_width, new_height = (long_side, short_side) if landscape else (short_side, long_side)
        left = (width - new_width) // 2
        top = (height - new_height) // 2
        box = (left, top, left + new_width, top + new_height)

        transform.crop_box = box
        logger.debug(f"Clamped aspect ratio {ratio:.2f} with crop {box}")
        return image.crop(box)

    def _enhance_image(self, image: Image.Image) -> Image.Image:
        """
        Apply image enhancements for better OCR quality.

        Autocontrast is idempotent; sharpening is not and is off by
        default.
        """
        if self.enhance_contrast:
            image = ImageOps.autocontrast(image)

        if self.sharpen:
            image = ImageEnhance.Sharpness(image).enhance(1.1)

        return image

    def _validate_size(self, image: Image.Image) -> None:
        """
        Warn when the result is below the useful size for recognition.
        Small images may still work.
        """
        width, height = image.size
        long_side, short_side = max(width, height), min(width, height)

        if long_side < self.min_width or short_side < self.min_height:
            logger.warning(
                f"Image size {width}x{height} below minimum "
                f"{self.min_width}x{self.min_height}"
            )
