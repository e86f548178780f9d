"""
Length-of-stay computation and inlier/outlier classification.
"""

import math
from datetime import datetime, time, timezone
from typing import NamedTuple, Optional

from .exceptions import InvalidNumericInputError
from .models import DateLike, StayClassification


SECONDS_PER_DAY = 86400


class StayResult(NamedTuple):
    length_of_stay: int
    classification: Optional[StayClassification]


def _as_datetime(value: DateLike) -> datetime:
    """Naive datetime; aware timestamps are converted to UTC first."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime.combine(value, time.min)


def length_of_stay(admission: Optional[DateLike], discharge: Optional[DateLike]) -> int:
    """
    Whole days between admission and discharge.

    Partial days are rounded half up. Missing dates and discharges before
    admission give 0.
    """
    if admission is None or discharge is None:
        return 0

    seconds = (_as_datetime(discharge) - _as_datetime(admission)).total_seconds()
    days = math.floor(seconds / SECONDS_PER_DAY + 0.5)
    return days if days >= 0 else 0


def _cutoff(value: Optional[float], name: str) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    if not math.isfinite(value):
        raise InvalidNumericInputError(name, value)
    return value


def classify_length(
    days: int,
    lower_cutoff: Optional[float],
    upper_cutoff: Optional[float],
) -> Optional[StayClassification]:
    """
    Classify a length of stay against GRD cutoff points.

    Returns None (unclassified) when neither cutoff is known. With a single
    cutoff only that side can produce an outlier.
    """
    lower = _cutoff(lower_cutoff, "lower_cutoff")
    upper = _cutoff(upper_cutoff, "upper_cutoff")

    if lower is None and upper is None:
        return None
    if upper is not None and days > upper:
        return StayClassification.OUTLIER_SUPERIOR
    if lower is not None and days < lower:
        return StayClassification.OUTLIER_INFERIOR
    return StayClassification.INLIER


def classify_stay(
    admission: Optional[DateLike],
    discharge: Optional[DateLike],
    lower_cutoff: Optional[float],
    upper_cutoff: Optional[float],
) -> StayResult:
    """
    Compute length of stay and its classification.

    Args:
        admission: Admission date or timestamp
        discharge: Discharge date or timestamp
        lower_cutoff: GRD lower cutoff point (days)
        upper_cutoff: GRD upper cutoff point (days)

    Returns:
        StayResult(length_of_stay, classification); classification is None
        when the episode cannot be classified

    Raises:
        InvalidNumericInputError: If a cutoff is NaN or infinite
    """
    days = length_of_stay(admission, discharge)
    return StayResult(days, classify_length(days, lower_cutoff, upper_cutoff))
