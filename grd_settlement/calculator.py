"""
Surcharge and settlement amount calculations.
"""

import logging
import math
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from .config import EngineConfig, first_present
from .exceptions import InvalidNumericInputError
from .models import EpisodeOverrides, StayClassification, normalize_agreement_code
from .reference_data import AgreementPriceEntry, GrdRule
from .tariff import latest_entry


logger = logging.getLogger(__name__)


DAILY_RATE_AGREEMENT = "CH0041"
OUTLIER_AGREEMENT = "FNS012"


class DelayMethod(str, Enum):
    DAILY_RATE = "daily_rate"          # delay days x dated daily waiting rate
    GROUP_VALUE_SHARE = "group_share"  # group value / reference days x delay days
    MANUAL = "manual"                  # caller-supplied amount


DELAY_METHODS: Dict[str, DelayMethod] = {
    DAILY_RATE_AGREEMENT: DelayMethod.DAILY_RATE,
    "FNS012": DelayMethod.GROUP_VALUE_SHARE,
    "FNS026": DelayMethod.GROUP_VALUE_SHARE,
    "FNS019": DelayMethod.GROUP_VALUE_SHARE,
}


def finite_or_zero(value: Optional[float], field: str) -> float:
    """
    Amount for arithmetic: None counts as 0.

    Raises:
        InvalidNumericInputError: If value is NaN or infinite
    """
    if value is None:
        return 0.0
    value = float(value)
    if not math.isfinite(value):
        raise InvalidNumericInputError(field, value)
    return value


def _manual_amount(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    value = float(value)
    return value if math.isfinite(value) else 0.0


def daily_waiting_rate(
    price_entries: Iterable[AgreementPriceEntry],
    admission_date: Optional[date],
) -> Optional[float]:
    """
    CH0041 daily waiting rate in force on the admission date.

    Only entries with both effective dates whose range contains the
    admission day are considered; the most recently created wins. Rates
    must be finite and positive.
    """
    if admission_date is None:
        return None

    candidates = []
    for entry in price_entries:
        if entry.agreement != DAILY_RATE_AGREEMENT or not entry.covers(admission_date):
            continue
        try:
            rate = float(entry.price)
        except (TypeError, ValueError):
            continue
        if math.isfinite(rate) and rate > 0:
            candidates.append(entry)

    entry = latest_entry(candidates)
    return float(entry.price) if entry else None


class SurchargeCalculator:
    """
    Calculates the rescue-delay and superior-outlier add-on payments.

    Rescue delay:
        CH0041:                 delay days x daily waiting rate
        FNS012, FNS026, FNS019: ((weight x base price) / reference days) x delay days
        other agreements:       manual amount

    Superior outlier (FNS012 only, Outlier Superior stays only):
        grace period = upper cutoff + percentile 50
        payment = (days past grace x weight x base price) / reference days

    Reference days resolve through the GRD's 75th percentile, then its upper
    cutoff, then the configured default, then config.min_reference_days.
    Missing reference data never raises; the payment degrades to 0 or to
    the manual amount.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        """
        Initialize the calculator.

        Args:
            config: Engine defaults for incomplete GRD data
        """
        self.config = config or EngineConfig()

    def reference_days(self, grd: Optional[GrdRule], upper_cutoff: Optional[float] = None) -> float:
        """75th-percentile reference days for an episode's GRD."""
        days = first_present(
            lambda: grd.percentile75 if grd else None,
            lambda: upper_cutoff if upper_cutoff is not None else (grd.upper_cutoff if grd else None),
            lambda: self.config.default_percentile75,
        )
        if days is None:
            logger.warning(
                "No 75th percentile for GRD %s, using %s reference days",
                grd.code if grd else None,
                self.config.min_reference_days,
            )
            return self.config.min_reference_days
        return days

    def rescue_delay_payment(
        self,
        agreement_code: Optional[str],
        delay_days: Optional[int],
        group_weight: Optional[float],
        base_price: Optional[float],
        grd: Optional[GrdRule] = None,
        admission_date: Optional[date] = None,
        price_entries: Iterable[AgreementPriceEntry] = (),
        manual_payment: Optional[float] = None,
    ) -> Tuple[float, dict]:
        """
        Calculate the rescue-delay payment.

        Args:
            agreement_code: Insurance agreement code
            delay_days: Days waiting for rescue/transfer
            group_weight: Episode GRD weight
            base_price: Resolved base price
            grd: Episode GRD rule
            admission_date: Admission date (selects the CH0041 rate)
            price_entries: Price entries for the agreement
            manual_payment: Caller-supplied amount used when no formula applies

        Returns:
            Tuple of (payment, calculation_details)
        """
        days = int(delay_days) if delay_days and delay_days > 0 else 0
        code = normalize_agreement_code(agreement_code)
        fallback = _manual_amount(manual_payment)

        details = {
            "agreement_code": code,
            "delay_days": days,
            "method": DelayMethod.MANUAL,
            "daily_rate": None,
            "reference_days": None,
            "notes": [],
        }

        if days == 0:
            return fallback, details

        method = DELAY_METHODS.get(code, DelayMethod.MANUAL)

        if method == DelayMethod.DAILY_RATE:
            rate = daily_waiting_rate(price_entries, admission_date)
            if rate is None:
                logger.warning(
                    "%s: no daily waiting rate for admission date %s, using manual amount",
                    code, admission_date,
                )
                details["notes"].append(f"No {code} daily waiting rate for admission date; manual amount used")
                return fallback, details

            details["method"] = method
            details["daily_rate"] = rate
            payment = days * rate
            logger.debug("%s delay payment: %s days x %s = %s", code, days, rate, payment)
            return payment, details

        if method == DelayMethod.GROUP_VALUE_SHARE:
            weight = finite_or_zero(group_weight, "group_weight")
            price = finite_or_zero(base_price, "base_price")
            reference = self.reference_days(grd)

            details["method"] = method
            details["reference_days"] = reference
            payment = ((weight * price) / reference) * days
            logger.debug(
                "%s delay payment: ((%s x %s) / %s) x %s = %s",
                code, weight, price, reference, days, payment,
            )
            return payment, details

        return fallback, details

    def superior_outlier_payment(
        self,
        agreement_code: Optional[str],
        classification: Optional[StayClassification],
        length_of_stay: Optional[int],
        group_weight: Optional[float],
        base_price: Optional[float],
        grd: Optional[GrdRule] = None,
    ) -> Tuple[float, dict]:
        """
        Calculate the superior-outlier payment.

        Args:
            agreement_code: Insurance agreement code
            classification: Stay classification
            length_of_stay: Length of stay in days
            group_weight: Episode GRD weight
            base_price: Resolved base price
            grd: Episode GRD rule

        Returns:
            Tuple of (payment, calculation_details); payment is 0 unless the
            agreement is FNS012 and the stay is Outlier Superior
        """
        code = normalize_agreement_code(agreement_code)
        details = {
            "agreement_code": code,
            "grace_period": None,
            "days_post_grace": 0,
            "reference_days": None,
            "notes": [],
        }

        if code != OUTLIER_AGREEMENT or classification != StayClassification.OUTLIER_SUPERIOR:
            return 0.0, details

        upper = first_present(
            lambda: grd.upper_cutoff if grd else None,
            lambda: self.config.default_upper_cutoff,
        )
        if upper is None:
            logger.warning("%s outlier: no upper cutoff available", code)
            details["notes"].append("Outlier payment not calculated: no upper cutoff")
            return 0.0, details

        percentile50 = first_present(
            lambda: grd.percentile50 if grd else None,
            lambda: self.config.default_percentile50,
        )
        if percentile50 is None:
            logger.warning("%s outlier: no 50th percentile available", code)
            details["notes"].append("Outlier payment not calculated: no 50th percentile")
            return 0.0, details

        reference = self.reference_days(grd, upper_cutoff=upper)
        details["reference_days"] = reference

        days = length_of_stay if length_of_stay and length_of_stay > 0 else 0
        weight = finite_or_zero(group_weight, "group_weight")
        price = finite_or_zero(base_price, "base_price")
        if days == 0 or weight <= 0 or price <= 0:
            return 0.0, details

        grace_period = upper + percentile50
        days_post_grace = max(0.0, days - grace_period)
        details["grace_period"] = grace_period
        details["days_post_grace"] = days_post_grace
        if days_post_grace == 0:
            return 0.0, details

        payment = (days_post_grace * weight * price) / reference
        logger.debug(
            "%s outlier payment: (%s x %s x %s) / %s = %s",
            code, days_post_grace, weight, price, reference, payment,
        )
        details["notes"].append(
            f"Outlier payment applied: {days_post_grace:g} days past grace period of {grace_period:g}"
        )
        return payment, details


class Aggregate(NamedTuple):
    group_value: float
    final_amount: float
    notes: List[str]


class SettlementAggregator:
    """
    Combines group value and add-on payments into the final amount.

    group value  = weight x base price
    final amount = group value + technology + outlier + delay

    Manual overrides replace either value only for episodes outside the
    normal group; otherwise they are ignored and a note says so.
    """

    def aggregate(
        self,
        group_weight: Optional[float],
        base_price: Optional[float],
        technology_amount: Optional[float] = None,
        delay_payment: Optional[float] = None,
        outlier_payment: Optional[float] = None,
        overrides: Optional[EpisodeOverrides] = None,
        outside_normal_group: bool = False,
    ) -> Aggregate:
        """
        Aggregate settlement amounts.

        Raises:
            InvalidNumericInputError: If any amount is NaN or infinite
        """
        weight = finite_or_zero(group_weight, "group_weight")
        price = finite_or_zero(base_price, "base_price")
        technology = finite_or_zero(technology_amount, "technology_amount")
        delay = finite_or_zero(delay_payment, "delay_payment")
        outlier = finite_or_zero(outlier_payment, "outlier_payment")
        overrides = overrides or EpisodeOverrides()
        notes: List[str] = []

        supplied = overrides.supplied()
        if supplied and not outside_normal_group:
            logger.warning("Ignoring manual override of %s: episode is within the normal group", ", ".join(supplied))
            notes.append(
                f"Manual override of {', '.join(supplied)} ignored: episode is within the normal group"
            )
        honor = outside_normal_group

        if honor and overrides.group_value is not None:
            group_value = finite_or_zero(overrides.group_value, "group_value")
            notes.append(f"Manual group value override: {group_value:,.2f}")
        elif weight == 0 or price == 0:
            group_value = 0.0
        else:
            group_value = weight * price

        if honor and overrides.final_amount is not None:
            final_amount = finite_or_zero(overrides.final_amount, "final_amount")
            notes.append(f"Manual final amount override: {final_amount:,.2f}")
        else:
            final_amount = group_value + technology + outlier + delay

        return Aggregate(group_value, final_amount, notes)
