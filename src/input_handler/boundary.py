"""
Document Boundary Detection Module.

Finds the four corners of an identity card in a photograph and warps the
card to a straight rectangle.

Detection pipeline:
    grayscale -> replicate-padded -> Gaussian blur -> Canny edges ->
    dilation -> contours -> 4-point convex polygons -> area and
    aspect ratio checks

Author: ML Engineering Team
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from config import get_config
from src.utils.logger import get_logger
from src.utils.exceptions import BoundaryNotFoundError

# Initialize module logger
logger = get_logger(__name__)


def order_points(pts: np.ndarray) -> np.ndarray:
    """
    Order four points as top-left, top-right, bottom-right, bottom-left.

    Args:
        pts: Array of shape (4, 2).

    Returns:
        float32 array of shape (4, 2) in canonical order.
    """
    rect = np.zeros((4, 2), dtype="float32")

    # Top-left has the smallest x+y, bottom-right the largest
    s = pts.sum(axis=1)
    rect[0] = pts[np.argmin(s)]
    rect[2] = pts[np.argmax(s)]

    # Top-right has the smallest y-x, bottom-left the largest
    diff = np.diff(pts, axis=1)
    rect[1] = pts[np.argmin(diff)]
    rect[3] = pts[np.argmax(diff)]

    return rect


def rectified_size(rect: np.ndarray) -> Tuple[int, int]:
    """
    Size of the straightened rectangle for an ordered quad.

    Args:
        rect: Ordered corners (tl, tr, br, bl).

    Returns:
        (width, height) in pixels.
    """
    (tl, tr, br, bl) = rect

    width_a = np.hypot(br[0] - bl[0], br[1] - bl[1])
    width_b = np.hypot(tr[0] - tl[0], tr[1] - tl[1])
    height_a = np.hypot(tr[0] - br[0], tr[1] - br[1])
    height_b = np.hypot(tl[0] - bl[0], tl[1] - bl[1])

    return max(int(width_a), int(width_b)), max(int(height_a), int(height_b))


@dataclass(frozen=True)
class BoundaryDetection:
    """
    A detected document quad.

    Attributes:
        corners: Ordered corners (tl, tr, br, bl) in image pixels.
        area_ratio: Quad area divided by frame area.
        full_frame: True when the quad already coincides with the frame,
            i.e. the image is already cropped to the document.
    """
    corners: Tuple[Tuple[float, float], ...]
    area_ratio: float
    full_frame: bool = False

    def as_array(self) -> np.ndarray:
        return np.array(self.corners, dtype="float32")


class BoundaryDetector:
    """
    Contour-based identity card boundary detector.

    Attributes:
        border: Replicate padding added around the frame so that cards
            touching the frame edge still close into a contour.
        min_area_ratio: Smallest quad area, relative to the frame.
        frame_margin: Corner tolerance, relative to the frame size, under
            which a quad is treated as the frame itself.
        aspect_min: Smallest plausible long/short side ratio.
        aspect_max: Largest plausible long/short side ratio.

    Example:
        >>> detector = BoundaryDetector()
        >>> detection = detector.detect(image)
        >>> card = detector.rectify(image, detection)
    """

    def __init__(
        self,
        border: Optional[int] = None,
        canny_low: Optional[int] = None,
        canny_high: Optional[int] = None,
        min_area_ratio: Optional[float] = None,
        frame_margin: Optional[float] = None,
        max_candidates: Optional[int] = None,
        aspect_min: Optional[float] = None,
        aspect_max: Optional[float] = None
    ) -> None:
        self.border = border if border is not None else get_config("input.boundary.border", 12)
        self.canny_low = canny_low or get_config("input.boundary.canny_low", 50)
        self.canny_high = canny_high or get_config("input.boundary.canny_high", 150)
        self.min_area_ratio = (
            min_area_ratio if min_area_ratio is not None
            else get_config("input.boundary.min_area_ratio", 0.15)
        )
        self.frame_margin = (
            frame_margin if frame_margin is not None
            else get_config("input.boundary.frame_margin", 0.03)
        )
        self.max_candidates = max_candidates or get_config("input.boundary.max_candidates", 10)
        self.aspect_min = aspect_min or get_config("input.aspect_ratio.min", 1.2)
        self.aspect_max = aspect_max or get_config("input.aspect_ratio.max", 1.8)

        logger.debug(
            f"BoundaryDetector initialized (min_area={self.min_area_ratio}, "
            f"aspect={self.aspect_min}-{self.aspect_max})"
        )

    def detect(self, image: Image.Image) -> BoundaryDetection:
        """
        Locate the document quad in an image.

        Args:
            image: RGB PIL image.

        Returns:
            BoundaryDetection for the largest plausible quad.

        Raises:
            BoundaryNotFoundError: If no contour is document-shaped.
        """
        width, height = image.size
        frame_area = float(width * height)

        gray = cv2.cvtColor(np.array(image.convert('RGB')), cv2.COLOR_RGB2GRAY)
        b = self.border
        padded = cv2.copyMakeBorder(gray, b, b, b, b, cv2.BORDER_REPLICATE)

        blurred = cv2.GaussianBlur(padded, (5, 5), 0)
        edges = cv2.Canny(blurred, self.canny_low, self.canny_high)
        edges = cv2.dilate(edges, np.ones((3, 3), np.uint8), iterations=1)

        contours, _ = cv2.findContours(edges, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)
        contours = sorted(contours, key=cv2.contourArea, reverse=True)

        considered = 0
        for contour in contours[:self.max_candidates]:
            if cv2.contourArea(contour) < frame_area * self.min_area_ratio:
                break
            considered += 1

            perimeter = cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, 0.02 * perimeter, True)
            if len(approx) != 4 or not cv2.isContourConvex(approx):
                continue

            pts = approx.reshape(4, 2).astype("float32") - b
            pts[:, 0] = np.clip(pts[:, 0], 0, width - 1)
            pts[:, 1] = np.clip(pts[:, 1], 0, height - 1)
            rect = order_points(pts)

            quad_w, quad_h = rectified_size(rect)
            if min(quad_w, quad_h) <= 0:
                continue
            ratio = max(quad_w, quad_h) / min(quad_w, quad_h)
            if not self.aspect_min <= ratio <= self.aspect_max:
                logger.debug(f"Rejected quad with aspect ratio {ratio:.2f}")
                continue

            area_ratio = float(cv2.contourArea(rect)) / frame_area
            detection = BoundaryDetection(
                corners=tuple((float(x), float(y)) for x, y in rect),
                area_ratio=area_ratio,
                full_frame=self._is_frame(rect, width, height)
            )
            logger.debug(
                f"Document boundary found: area={area_ratio:.2f}, "
                f"aspect={ratio:.2f}, full_frame={detection.full_frame}"
            )
            return detection

        raise BoundaryNotFoundError(
            f"no 4-point contour within aspect range {self.aspect_min}-{self.aspect_max}",
            candidates=considered
        )

    def _is_frame(self, rect: np.ndarray, width: int, height: int) -> bool:
        """Check whether every corner sits on the matching frame corner."""
        frame = np.array(
            [[0, 0], [width - 1, 0], [width - 1, height - 1], [0, height - 1]],
            dtype="float32"
        )
        tolerance = np.array([width, height], dtype="float32") * self.frame_margin
        return bool(np.all(np.abs(rect - frame) <= tolerance))

    def rectify(self, image: Image.Image, detection: BoundaryDetection) -> Image.Image:
        """
        Warp the detected quad to a straight rectangle.

        Args:
            image: Source RGB image.
            detection: Result of detect().

        Returns:
            Rectified PIL image.
        """
        rect = detection.as_array()
        out_w, out_h = rectified_size(rect)

        dst = np.array([
            [0, 0],
            [out_w - 1, 0],
            [out_w - 1, out_h - 1],
            [0, out_h - 1]
        ], dtype="float32")

        matrix = cv2.getPerspectiveTransform(rect, dst)
        warped = cv2.warpPerspective(np.array(image.convert('RGB')), matrix, (out_w, out_h))

        return Image.fromarray(warped)
