"""
OCR Result Data Classes.

This module defines data structures for recognition output, providing
a standardized format for text and bounding box information no matter
which engine produced it.

Classes:
    BoundingBox: Four-corner box in canonical image pixels
    TextToken: One recognized token with geometry and confidence

Author: ML Engineering Team
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

Point = Tuple[float, float]


@dataclass(frozen=True)
class BoundingBox:
    """
    Quadrilateral around a token.

    Corners are ordered top-left, top-right, bottom-right, bottom-left,
    in canonical image pixels. Engines that report rotated boxes keep
    their corners; the axis-aligned accessors cover the quad.

    Example:
        >>> box = BoundingBox.from_rect(100, 50, 200, 80)
        >>> box.center
        (150.0, 65.0)
    """
    corners: Tuple[Point, Point, Point, Point]

    @classmethod
    def from_rect(cls, x1: float, y1: float, x2: float, y2: float) -> 'BoundingBox':
        """Build a box from (left, top, right, bottom)."""
        return cls(corners=((x1, y1), (x2, y1), (x2, y2), (x1, y2)))

    @classmethod
    def from_points(cls, points: Sequence[Sequence[float]]) -> 'BoundingBox':
        """Build a box from four (x, y) points already in tl/tr/br/bl order."""
        if len(points) != 4:
            raise ValueError(f"Bounding box needs 4 points, got {len(points)}")
        return cls(corners=tuple((float(p[0]), float(p[1])) for p in points))

    @property
    def x1(self) -> float:
        """Left coordinate."""
        return min(p[0] for p in self.corners)

    @property
    def y1(self) -> float:
        """Top coordinate."""
        return min(p[1] for p in self.corners)

    @property
    def x2(self) -> float:
        """Right coordinate."""
        return max(p[0] for p in self.corners)

    @property
    def y2(self) -> float:
        """Bottom coordinate."""
        return max(p[1] for p in self.corners)

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.x1 + self.x2) / 2, (self.y1 + self.y2) / 2)

    def normalized(self, image_width: int, image_height: int,
                   scale: int = 1000) -> Tuple[int, int, int, int]:
        """
        Axis-aligned box on a 0-scale grid.

        Args:
            image_width: Width of the canonical image.
            image_height: Height of the canonical image.
            scale: Maximum coordinate value (default 1000).

        Returns:
            (x1, y1, x2, y2) clamped to [0, scale].
        """
        def clamp(value: float) -> int:
            return max(0, min(scale, int(value)))

        return (
            clamp(self.x1 * scale / image_width),
            clamp(self.y1 * scale / image_height),
            clamp(self.x2 * scale / image_width),
            clamp(self.y2 * scale / image_height),
        )

    def to_list(self) -> List[List[float]]:
        return [list(p) for p in self.corners]


@dataclass
class TextToken:
    """
    Represents a single token extracted by text recognition.

    Attributes:
        text: The recognized text content
        bbox: Bounding box in canonical image pixels
        confidence: Engine confidence in [0, 1]
        script: Script or language hint, if the engine reports one
        low_confidence: Set when confidence is below the recognition floor
        index: Reading-order position in the document
        normalized_bbox: Axis-aligned box on a 0-1000 scale

    Example:
        >>> token = TextToken(
        ...     text="DOB",
        ...     bbox=BoundingBox.from_rect(100, 50, 160, 80),
        ...     confidence=0.96
        ... )
    """
    text: str
    bbox: BoundingBox
    confidence: float = 0.0
    script: Optional[str] = None
    low_confidence: bool = False
    index: int = 0
    normalized_bbox: Optional[Tuple[int, int, int, int]] = None

    @property
    def center(self) -> Tuple[float, float]:
        """Centre on the 0-1000 grid, falling back to pixels."""
        if self.normalized_bbox is not None:
            x1, y1, x2, y2 = self.normalized_bbox
            return ((x1 + x2) / 2, (y1 + y2) / 2)
        return self.bbox.center

    @property
    def box(self) -> Tuple[float, float, float, float]:
        """Axis-aligned box on the 0-1000 grid, falling back to pixels."""
        if self.normalized_bbox is not None:
            return tuple(float(v) for v in self.normalized_bbox)
        return (self.bbox.x1, self.bbox.y1, self.bbox.x2, self.bbox.y2)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            'text': self.text,
            'bbox': self.bbox.to_list(),
            'normalized_bbox': list(self.normalized_bbox) if self.normalized_bbox else None,
            'confidence': round(self.confidence, 4),
            'script': self.script,
            'low_confidence': self.low_confidence,
            'index': self.index,
        }

    def __repr__(self) -> str:
        return f"TextToken('{self.text}', index={self.index}, conf={self.confidence:.2f})"


def group_lines(tokens: List[TextToken], tolerance: float = 0.6) -> List[List[TextToken]]:
    """
    Group tokens into text lines by vertical overlap.

    Two tokens share a line when their vertical overlap is at least
    ``tolerance`` times the smaller token height. Lines are returned
    top to bottom with tokens left to right.

    Args:
        tokens: Tokens with geometry.
        tolerance: Minimum overlap fraction.

    Returns:
        List of lines, each a list of tokens.
    """
    lines: List[List[TextToken]] = []
    bounds: List[Tuple[float, float]] = []

    for token in sorted(tokens, key=lambda t: (t.box[1], t.box[0])):
        _, top, _, bottom = token.box
        height = max(bottom - top, 1e-6)

        placed = False
        for i, (line_top, line_bottom) in enumerate(bounds):
            overlap = min(bottom, line_bottom) - max(top, line_top)
            smaller = min(height, max(line_bottom - line_top, 1e-6))
            if overlap >= tolerance * smaller:
                lines[i].append(token)
                bounds[i] = (min(top, line_top), max(bottom, line_bottom))
                placed = True
                break

        if not placed:
            lines.append([token])
            bounds.append((top, bottom))

    ordered = sorted(zip(bounds, lines), key=lambda item: item[0][0])
    return [sorted(line, key=lambda t: t.box[0]) for _, line in ordered]


def reading_order(tokens: List[TextToken], tolerance: float = 0.6) -> List[TextToken]:
    """Flatten tokens into reading order: lines top to bottom, left to right."""
    return [token for line in group_lines(tokens, tolerance) for token in line]


# (token, start, end) character span inside one token's text
Span = Tuple[TextToken, int, int]


class TextRun:
    """
    A run of token spans joined into one searchable string.

    Regex searches over ``text`` can be mapped back to the token
    character spans they cover, which is how multi-token labels,
    machine-readable lines and joined values keep their provenance.

    Example:
        >>> run = TextRun.from_tokens([dob_token, date_token])
        >>> run.text
        'DOB 03/15/1985'
        >>> run.slice(4, 14)
        [(date_token, 0, 10)]
    """

    def __init__(self, spans: List[Span], separator: str = ' ') -> None:
        self.spans = list(spans)
        self.offsets: List[int] = []

        parts = []
        position = 0
        for i, (token, start, end) in enumerate(self.spans):
            if i:
                parts.append(separator)
                position += len(separator)
            self.offsets.append(position)
            parts.append(token.text[start:end])
            position += end - start

        self.text = ''.join(parts)

    @classmethod
    def from_tokens(cls, tokens: List[TextToken]) -> 'TextRun':
        return cls([(token, 0, len(token.text)) for token in tokens])

    @property
    def tokens(self) -> List[TextToken]:
        return [span[0] for span in self.spans]

    def slice(self, start: int, end: int) -> List[Span]:
        """
        Token spans covered by ``text[start:end]``.

        Separators between tokens belong to no token and are skipped.
        """
        covered = []
        for offset, (token, span_start, span_end) in zip(self.offsets, self.spans):
            length = span_end - span_start
            lo = max(start, offset)
            hi = min(end, offset + length)
            if lo < hi:
                covered.append((token, span_start + lo - offset, span_start + hi - offset))
        return covered

    def __len__(self) -> int:
        return len(self.spans)


def build_lines(tokens: List[TextToken], tolerance: float = 0.6) -> List[TextRun]:
    """Group tokens into lines and return one TextRun per line."""
    return [TextRun.from_tokens(line) for line in group_lines(tokens, tolerance)]
