"""Numeric parsing and tolerance arithmetic."""
import locale
import math
from typing import Optional

from schemas.acceptance import Tolerance

from .errors import UnparseableNumeric


def parse_number(raw: Optional[str]) -> float:
    """Parse a raw table value as a float.

    The invariant form (``1234.5``) is tried first, then the current locale
    (e.g. ``1234,5`` under a comma-decimal locale). ``NaN`` is rejected.

    Raises:
        UnparseableNumeric: the value is blank, NaN or not a number
    """
    text = (raw or "").strip()
    if not text or "_" in text:
        raise UnparseableNumeric(raw or "")
    try:
        value = float(text)
    except ValueError:
        try:
            value = locale.atof(text)
        except ValueError:
            raise UnparseableNumeric(raw) from None
    if math.isnan(value):
        raise UnparseableNumeric(raw)
    return value


def try_parse_number(raw: Optional[str]) -> Optional[float]:
    """Like :func:`parse_number` but returns None for non-numeric values."""
    try:
        return parse_number(raw)
    except UnparseableNumeric:
        return None


def compute_threshold(reference: float, tolerance: Tolerance) -> float:
    """threshold = max(abs, |reference| * ratio)."""
    return max(tolerance.abs, abs(reference) * tolerance.ratio)


def exceeds_tolerance(reference: float, actual: float, tolerance: Tolerance) -> bool:
    """True when |actual - reference| is strictly above the threshold."""
    return abs(actual - reference) > compute_threshold(reference, tolerance)
