"""
Data Normalizers Module.

This module provides normalization functions for:
    - Dates (template format list, locale-aware fallback)
    - Person names (first / middle / last by template order)
    - Enumerations (gender, eye color)
    - Numbers with units (height, weight)
    - Text cleaning

Every normalizer returns None when the raw value cannot be converted;
deciding what that means for the field is the processor's job.

Author: ML Engineering Team
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from dateutil import parser as date_parser

from config import get_config
from src.utils.logger import get_logger

# Initialize module logger
logger = get_logger(__name__)

# Letters OCR commonly reads in place of digits
DIGIT_LOOKALIKES = str.maketrans({'O': '0', 'o': '0', 'D': '0', 'I': '1', 'l': '1', 'S': '5'})


class DateNormalizer:
    """
    Normalizes date strings to ``datetime.date``.

    Resolution order:
        1. Template/field strptime formats; the first match wins.
        2. dateutil, with the template locale's day-first preference.
           The other order is never tried, so ambiguous forms are never
           guessed.

    Two-digit years on past-only fields (birth dates) that would land in
    the future are moved back a century.

    Example:
        >>> normalizer = DateNormalizer()
        >>> normalizer.normalize("03/15/1985", formats=["%m/%d/%Y"])
        datetime.date(1985, 3, 15)
        >>> normalizer.normalize("850101", formats=["%y%m%d"], past_only=True)
        datetime.date(1985, 1, 1)
    """

    def __init__(self) -> None:
        """Initialize the date normalizer with configuration."""
        self.output_format = get_config("postprocessing.date.output_format", "%Y-%m-%d")
        logger.debug(f"DateNormalizer initialized (output: {self.output_format})")

    def normalize(
        self,
        date_str: str,
        formats: Iterable[str] = (),
        day_first: bool = False,
        past_only: bool = False,
        today: Optional[date] = None
    ) -> Optional[date]:
        """
        Parse a date string.

        Args:
            date_str: Raw date text.
            formats: strptime formats to try, in order.
            day_first: Locale preference for the dateutil fallback.
            past_only: The date can never lie after ``today``.
            today: Reference date (defaults to the current date).

        Returns:
            Parsed date, or None if parsing fails.
        """
        if not date_str:
            return None

        today = today or date.today()
        cleaned = self._clean_date_string(date_str)

        parsed = self._try_explicit_formats(cleaned, formats)
        if parsed is None:
            parsed = self._try_dateutil_parser(cleaned, day_first)

        if parsed is None:
            logger.debug(f"Could not parse date: {date_str}")
            return None

        if past_only and parsed > today and self._two_digit_year(cleaned):
            parsed = parsed.replace(year=parsed.year - 100)
            logger.debug(f"Moved two-digit year back a century: {parsed}")

        return parsed

    def _clean_date_string(self, date_str: str) -> str:
        """Collapse whitespace, drop ordinals and fix letter/digit confusions."""
        date_str = ' '.join(date_str.split())
        date_str = re.sub(r'(\d+)(st|nd|rd|th)\b', r'\1', date_str, flags=re.IGNORECASE)

        # Only all-numeric shapes get lookalike fixes; month names stay intact
        if re.fullmatch(r'[\dOoDIlS/.\- ]+', date_str) and re.search(r'\d', date_str):
            date_str = date_str.translate(DIGIT_LOOKALIKES)

        return date_str.strip(' .,-')

    def _try_explicit_formats(self, date_str: str, formats: Iterable[str]) -> Optional[date]:
        for fmt in formats:
            try:
                return datetime.strptime(date_str, fmt).date()
            except ValueError:
                continue
        return None

    def _try_dateutil_parser(self, date_str: str, day_first: bool) -> Optional[date]:
        # Require day, month and year so dateutil does not fill gaps from today
        if len(re.findall(r'\d+|[A-Za-z]{3,}', date_str)) < 3:
            return None
        try:
            return date_parser.parse(date_str, dayfirst=day_first).date()
        except (ValueError, OverflowError):
            return None

    @staticmethod
    def _two_digit_year(date_str: str) -> bool:
        return not re.search(r'\d{4}', date_str) or bool(re.fullmatch(r'\d{6}', date_str))

    def format(self, value: date) -> str:
        return value.strftime(self.output_format)


@dataclass(frozen=True)
class PersonName:
    """
    A person's name split into components.

    Example:
        >>> PersonName(first="John", middle="Michael", last="Doe").full
        'John Michael Doe'
    """
    first: str = ''
    middle: Optional[str] = None
    last: str = ''

    @property
    def full(self) -> str:
        return ' '.join(p for p in (self.first, self.middle, self.last) if p)

    def part(self, name: str) -> Optional[str]:
        """Component by name ("first", "middle", "last")."""
        return getattr(self, name) or None

    def to_dict(self) -> Dict[str, Any]:
        return {'first': self.first, 'middle': self.middle, 'last': self.last}

    def __str__(self) -> str:
        return self.full


class NameNormalizer:
    """
    Splits full names into first / middle / last.

    The template's name order decides, unless the text carries its own
    separator: a comma ("DOE, JOHN") or the machine-readable ``<<``
    ("DOE<<JOHN<MICHAEL") always means surname first.

    Example:
        >>> NameNormalizer().normalize("JOHN MICHAEL DOE")
        PersonName(first='John', middle='Michael', last='Doe')
    """

    def normalize(self, raw: str, order: str = 'first_last') -> Optional[PersonName]:
        if not raw or not raw.strip():
            return None

        if '<<' in raw:
            last, _, given = raw.strip('<').partition('<<')
            given_parts = given.replace('<', ' ').split()
            last = last.replace('<', ' ')
        elif ',' in raw:
            last, _, given = raw.partition(',')
            given_parts = given.split()
        else:
            words = raw.replace('<', ' ').split()
            if order == 'last_first':
                last, given_parts = words[0], words[1:]
            else:
                last, given_parts = words[-1], words[:-1]

        last = self._tidy(last)
        given_parts = [self._tidy(p) for p in given_parts if self._tidy(p)]
        if not last and not given_parts:
            return None

        return PersonName(
            first=given_parts[0] if given_parts else '',
            middle=' '.join(given_parts[1:]) or None,
            last=last
        )

    @staticmethod
    def _tidy(part: str) -> str:
        part = ' '.join(part.split()).strip(' .,;:-')
        return part.title() if part.isupper() else part


class EnumNormalizer:
    """
    Case-insensitive match against a fixed vocabulary.

    Example:
        >>> EnumNormalizer().normalize("bro", (("Brown", ("BRO",)),))
        'Brown'
    """

    def normalize(self, raw: str, vocabulary: Sequence[Tuple[str, Sequence[str]]]) -> Optional[str]:
        if not raw:
            return None
        key = ' '.join(raw.split()).upper()
        for canonical, aliases in vocabulary:
            if key == canonical.upper() or key in {a.upper() for a in aliases}:
                return canonical
        return None


class NumberNormalizer:
    """
    Converts measurements to floats in a target unit.

    Heights go to inches ("5'10\\"", "5-10", "178 cm"); weights to
    pounds ("180 lb", "82 kg"). Without a unit the first number is
    returned as is.

    Example:
        >>> NumberNormalizer().normalize("5'-10\\"", unit="in")
        70.0
    """

    FEET_INCHES = re.compile(r'(\d)\s*(?:\'|’|ft|-)\s*-?\s*(\d{1,2})\s*(?:"|”|\'\'|in)?')
    NUMBER = re.compile(r'(\d+(?:[.,]\d+)?)\s*([A-Za-z"]*)')

    def normalize(self, raw: str, unit: Optional[str] = None) -> Optional[float]:
        if not raw:
            return None
        text = ' '.join(raw.split())

        if unit == 'in':
            match = self.FEET_INCHES.search(text)
            if match:
                feet, inches = int(match.group(1)), int(match.group(2))
                if inches < 12:
                    return float(feet * 12 + inches)

        match = self.NUMBER.search(text)
        if not match:
            return None

        value = float(match.group(1).replace(',', '.'))
        suffix = match.group(2).lower()

        if unit == 'in' and suffix == 'cm':
            return round(value / 2.54, 1)
        if unit == 'lb' and suffix == 'kg':
            return round(value * 2.20462, 1)
        return value


class TextNormalizer:
    """
    Cleans free text values.

    Collapses whitespace, removes machine-readable ``<`` filler and
    trims punctuation from both ends.
    """

    EDGE_PUNCTUATION = ' .,;:-#*_'

    def normalize(self, raw: str) -> Optional[str]:
        if not raw:
            return None
        text = re.sub(r'<+', ' ', raw)
        text = ' '.join(text.split()).strip(self.EDGE_PUNCTUATION)
        return text or None
