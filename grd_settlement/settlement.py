"""
GRD settlement engine.

Runs the stay classifier, tariff resolver, surcharge calculator and
settlement aggregator over a snapshot of one episode and its reference data.
"""

import logging
import math
from typing import Any, Iterable, List, Optional

from .calculator import SettlementAggregator, SurchargeCalculator
from .config import EngineConfig
from .models import Episode, EpisodePatch, SettlementResult, StayClassification
from .reference_data import AgreementPriceEntry, GrdRule
from .stay import classify_stay
from .tariff import TariffResolver


logger = logging.getLogger(__name__)


AMOUNT_FIELDS = ("base_price", "group_value", "delay_payment", "outlier_payment", "final_amount")


class SettlementEngine:
    """
    Computes the payable amount for hospital episodes.

    The engine is a pure function of its inputs: it never reads or writes
    storage and holds no per-episode state, so the same snapshot always
    produces the same result.

    Example:
        >>> engine = SettlementEngine()
        >>> result = engine.settle(episode, grd=rule, price_entries=catalog.prices_for("FNS012"))
        >>> print(f"Final amount: ${result.final_amount:,.2f}")
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        """
        Initialize the settlement engine.

        Args:
            config: Optional engine configuration. If not provided, defaults
                    (and GRD_SETTLEMENT_* environment variables) are used.
        """
        self.config = config or EngineConfig()
        self.tariff_resolver = TariffResolver()
        self.surcharge_calculator = SurchargeCalculator(self.config)
        self.aggregator = SettlementAggregator()

    def settle(
        self,
        episode: Episode,
        grd: Optional[GrdRule] = None,
        price_entries: Iterable[AgreementPriceEntry] = (),
    ) -> SettlementResult:
        """
        Settle one episode.

        Args:
            episode: Episode record
            grd: GRD rule linked to the episode, None when not assigned
            price_entries: Price entries for the episode's agreement

        Returns:
            SettlementResult with every derived field recomputed

        Raises:
            InvalidNumericInputError: If a required number is NaN or infinite
        """
        prices: List[AgreementPriceEntry] = list(price_entries)

        stay = classify_stay(
            episode.admission_date,
            episode.discharge_date,
            grd.lower_cutoff if grd else None,
            grd.upper_cutoff if grd else None,
        )

        base_price, tier = self.tariff_resolver.resolve(
            episode.agreement_code,
            episode.group_weight,
            prices,
        )

        delay_payment, delay_details = self.surcharge_calculator.rescue_delay_payment(
            agreement_code=episode.agreement_code,
            delay_days=episode.rescue_delay_days,
            group_weight=episode.group_weight,
            base_price=base_price,
            grd=grd,
            admission_date=episode.admission_date,
            price_entries=prices,
            manual_payment=episode.manual_delay_payment,
        )

        outlier_payment, outlier_details = self.surcharge_calculator.superior_outlier_payment(
            agreement_code=episode.agreement_code,
            classification=stay.classification,
            length_of_stay=stay.length_of_stay,
            group_weight=episode.group_weight,
            base_price=base_price,
            grd=grd,
        )

        technology_amount = (episode.technology_amount or 0.0) if episode.technology_flag else 0.0

        aggregate = self.aggregator.aggregate(
            group_weight=episode.group_weight,
            base_price=base_price,
            technology_amount=technology_amount,
            delay_payment=delay_payment,
            outlier_payment=outlier_payment,
            overrides=episode.overrides,
            outside_normal_group=episode.outside_normal_group,
        )

        result = SettlementResult(
            episode_id=episode.episode_id,
            agreement_code=episode.agreement_code,
            grd_code=grd.code if grd else episode.grd_code,
            length_of_stay=stay.length_of_stay,
            classification=stay.classification,
            within_norm=_within_norm(stay.classification),
            tier=tier,
            base_price=base_price,
            group_value=aggregate.group_value,
            technology_amount=technology_amount,
            delay_payment=delay_payment,
            outlier_payment=outlier_payment,
            final_amount=aggregate.final_amount,
        )

        if grd is None:
            result.add_note("No GRD assigned; stay not classified")
        elif stay.classification is None:
            result.add_note(f"GRD {grd.code} has no cutoff points; stay not classified")
        if base_price is None:
            result.add_note(f"No base price for agreement {episode.agreement_code or '(none)'}")
        for note in delay_details["notes"] + outlier_details["notes"] + aggregate.notes:
            result.add_note(note)
        if (
            episode.manual_outlier_payment is not None
            and abs(episode.manual_outlier_payment - outlier_payment) > self.config.change_tolerance
        ):
            result.add_note(
                f"Manual outlier payment {episode.manual_outlier_payment:,.2f} superseded by calculated {outlier_payment:,.2f}"
            )

        logger.debug(
            "Settled episode %s: group value %.2f, final amount %.2f",
            episode.episode_id, result.group_value, result.final_amount,
        )
        return result

    def diff(self, episode: Episode, result: SettlementResult) -> EpisodePatch:
        """
        Derived fields whose recomputed value differs from the stored one.

        Amounts closer than config.change_tolerance count as unchanged.
        """
        patch = EpisodePatch(episode_id=episode.episode_id)
        for name, new_value in result.derived_fields().items():
            old_value = getattr(episode, name)
            if name in AMOUNT_FIELDS:
                changed = _amount_changed(old_value, new_value, self.config.change_tolerance)
            else:
                changed = old_value != new_value
            if changed:
                patch.changes[name] = new_value
        return patch

    @staticmethod
    def apply(episode: Episode, patch: EpisodePatch) -> Episode:
        """Return a copy of the episode with the patch applied."""
        if patch.is_empty:
            return episode
        return episode.model_copy(update=patch.changes)


def _within_norm(classification: Optional[StayClassification]) -> Optional[bool]:
    if classification is None:
        return None
    return classification == StayClassification.INLIER


def _amount_changed(old: Any, new: Any, tolerance: float) -> bool:
    if old is None or new is None:
        return old is not new
    if not (math.isfinite(old) and math.isfinite(new)):
        return True
    return abs(old - new) > tolerance
