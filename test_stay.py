"""
Tests for length of stay and inlier/outlier classification.

Run with: pytest test_stay.py -v
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from grd_settlement import StayClassification
from grd_settlement.exceptions import InvalidNumericInputError
from grd_settlement.stay import classify_length, classify_stay, length_of_stay


class TestLengthOfStay:
    """Test whole-day stay computation."""

    def test_whole_days(self):
        assert length_of_stay(date(2024, 1, 1), date(2024, 1, 15)) == 14

    def test_same_day(self):
        assert length_of_stay(date(2024, 1, 1), date(2024, 1, 1)) == 0

    def test_partial_days_round(self):
        assert length_of_stay(datetime(2024, 1, 1, 8, 0), datetime(2024, 1, 3, 20, 0)) == 3
        assert length_of_stay(datetime(2024, 1, 1, 8, 0), datetime(2024, 1, 3, 19, 59)) == 2

    def test_discharge_before_admission(self):
        assert length_of_stay(date(2024, 1, 15), date(2024, 1, 1)) == 0

    def test_missing_dates(self):
        assert length_of_stay(None, date(2024, 1, 1)) == 0
        assert length_of_stay(date(2024, 1, 1), None) == 0

    def test_aware_timestamp_with_naive_date(self):
        admission = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        # 3 days 14 hours
        assert length_of_stay(admission, date(2024, 1, 5)) == 4
        assert length_of_stay(date(2024, 1, 1), datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc)) == 4

    def test_aware_timestamps_compared_in_utc(self):
        admission = datetime(2024, 1, 1, 23, 0, tzinfo=timezone(timedelta(hours=-3)))
        discharge = datetime(2024, 1, 3, 2, 0)
        # admission is 2024-01-02 02:00 UTC
        assert length_of_stay(admission, discharge) == 1


class TestClassification:
    """Test cutoff-point classification."""

    def test_outlier_superior_scenario(self):
        result = classify_stay(date(2024, 1, 1), date(2024, 1, 15), 2, 10)
        assert result.length_of_stay == 14
        assert result.classification == StayClassification.OUTLIER_SUPERIOR

    def test_outlier_inferior(self):
        assert classify_length(1, 2, 10) == StayClassification.OUTLIER_INFERIOR

    def test_inlier_includes_cutoffs(self):
        assert classify_length(2, 2, 10) == StayClassification.INLIER
        assert classify_length(10, 2, 10) == StayClassification.INLIER

    def test_unclassified_without_cutoffs(self):
        assert classify_length(14, None, None) is None
        assert classify_stay(date(2024, 1, 1), date(2024, 1, 15), None, None).classification is None

    def test_single_cutoff(self):
        assert classify_length(14, None, 10) == StayClassification.OUTLIER_SUPERIOR
        assert classify_length(5, None, 10) == StayClassification.INLIER
        assert classify_length(1, 3, None) == StayClassification.OUTLIER_INFERIOR

    def test_missing_dates_still_classified(self):
        result = classify_stay(None, None, 2, 10)
        assert result.length_of_stay == 0
        assert result.classification == StayClassification.OUTLIER_INFERIOR

    def test_non_finite_cutoff_rejected(self):
        with pytest.raises(InvalidNumericInputError):
            classify_length(5, float("nan"), 10)
