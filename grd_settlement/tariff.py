"""
Base price resolution for insurance agreements.

Tiered agreements price an episode by the weight bracket its GRD weight
falls into; flat agreements have a single current price. In both cases the
most recently created matching price entry wins and effective date ranges
are ignored (those are only used for the CH0041 daily waiting rate).
"""

import logging
import math
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from .exceptions import InvalidNumericInputError
from .models import normalize_agreement_code
from .reference_data import AgreementPriceEntry


logger = logging.getLogger(__name__)


class AgreementKind(str, Enum):
    TIERED = "tiered"
    FLAT_PRICE = "flat"
    UNKNOWN = "unknown"


AGREEMENT_KINDS: Dict[str, AgreementKind] = {
    "FNS012": AgreementKind.TIERED,
    "FNS026": AgreementKind.TIERED,
    "FNS019": AgreementKind.FLAT_PRICE,
    "CH0041": AgreementKind.FLAT_PRICE,
}

# Upper bound (inclusive) of each tier; anything above the last bound is T3
TIER_BOUNDS: Tuple[Tuple[str, float], ...] = (
    ("T1", 1.5),
    ("T2", 2.5),
)
TOP_TIER = "T3"


def agreement_kind(agreement_code: Optional[str]) -> AgreementKind:
    """Classify an agreement code (normalized before lookup)."""
    code = normalize_agreement_code(agreement_code)
    if code is None:
        return AgreementKind.UNKNOWN
    return AGREEMENT_KINDS.get(code, AgreementKind.UNKNOWN)


def tier_for_weight(weight: Optional[float]) -> Optional[str]:
    """
    Weight bracket for tiered agreements.

    [0, 1.5] -> T1, (1.5, 2.5] -> T2, (2.5, inf) -> T3. Missing or negative
    weights have no tier.

    Raises:
        InvalidNumericInputError: If weight is NaN or infinite
    """
    if weight is None:
        return None
    if not math.isfinite(weight):
        raise InvalidNumericInputError("group_weight", weight)
    if weight < 0:
        return None

    for tier, upper in TIER_BOUNDS:
        if weight <= upper:
            return tier
    return TOP_TIER


def latest_entry(entries: Iterable[AgreementPriceEntry]) -> Optional[AgreementPriceEntry]:
    """Most recently created entry, None when there are none."""
    latest = None
    for entry in entries:
        if latest is None or entry.created_at > latest.created_at:
            latest = entry
    return latest


def usable_price(entry: Optional[AgreementPriceEntry]) -> Optional[float]:
    """Entry price if it is a finite non-negative number."""
    if entry is None:
        return None
    try:
        price = float(entry.price)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price < 0:
        return None
    return price


def _resolve_tiered(code: str, weight: Optional[float], entries) -> Tuple[Optional[float], Optional[str]]:
    tier = tier_for_weight(weight)
    if tier is None:
        logger.warning("No tier for agreement %s with GRD weight %s", code, weight)
        return None, None

    entry = latest_entry(e for e in entries if e.agreement == code and e.tier == tier)
    price = usable_price(entry)
    if price is None:
        logger.warning("No usable price for agreement %s tier %s", code, tier)
    return price, tier


def _resolve_flat(code: str, weight: Optional[float], entries) -> Tuple[Optional[float], Optional[str]]:
    entry = latest_entry(e for e in entries if e.agreement == code)
    price = usable_price(entry)
    if price is None:
        logger.warning("No usable price for agreement %s", code)
    return price, None


_RESOLVERS = {
    AgreementKind.TIERED: _resolve_tiered,
    AgreementKind.FLAT_PRICE: _resolve_flat,
}


class TariffResolver:
    """
    Resolves the base price for an agreement and GRD weight.

    Example:
        >>> resolver = TariffResolver()
        >>> price, tier = resolver.resolve("FNS012", 1.8, catalog.prices_for("FNS012"))
        >>> tier
        'T2'
    """

    def resolve(
        self,
        agreement_code: Optional[str],
        group_weight: Optional[float],
        price_entries: Iterable[AgreementPriceEntry],
    ) -> Tuple[Optional[float], Optional[str]]:
        """
        Resolve the base price.

        Args:
            agreement_code: Insurance agreement code
            group_weight: Episode GRD weight (required for tiered agreements)
            price_entries: Candidate price entries; entries for other
                          agreements are ignored

        Returns:
            Tuple of (price or None when not found, tier or None)
        """
        code = normalize_agreement_code(agreement_code)
        if code is None:
            logger.warning("No agreement code provided, base price not resolved")
            return None, None

        kind = agreement_kind(code)
        resolver = _RESOLVERS.get(kind)
        if resolver is None:
            logger.warning("Unknown agreement %s, base price not resolved", code)
            return None, None

        return resolver(code, group_weight, list(price_entries))


def resolve_base_price(
    agreement_code: Optional[str],
    group_weight: Optional[float],
    price_entries: Iterable[AgreementPriceEntry],
) -> Optional[float]:
    """Base price for an agreement and weight, None when not found."""
    price, _ = TariffResolver().resolve(agreement_code, group_weight, price_entries)
    return price
