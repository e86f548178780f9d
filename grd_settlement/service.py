"""
Settlement service: runs the engine against a repository.

Every read and every partial update recomputes all derived fields and
writes back whichever of them changed.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import EngineConfig
from .exceptions import ConcurrentUpdateError, OverrideNotAllowedError, UnknownTechnologyAdjustmentError
from .models import Episode, EpisodeOverrides, EpisodePatch, EpisodeUpdate, SettlementResult
from .reference_data import AgreementPriceEntry, GrdRule
from .repository import EpisodeRepository
from .settlement import SettlementEngine


logger = logging.getLogger(__name__)


OVERRIDE_FIELDS = {
    "group_value_override": "group_value",
    "final_amount_override": "final_amount",
}

REQUIRED_FLAGS = {"technology_flag", "outside_normal_group"}


class SettlementService:
    """
    Reads, updates and imports settlement data through a repository.

    Example:
        >>> repository = InMemoryEpisodeRepository()
        >>> repository.load_from_directory("data")
        >>> service = SettlementService(repository)
        >>> result = service.read_episode("EP-1001")
    """

    def __init__(self, repository: EpisodeRepository, config: Optional[EngineConfig] = None):
        """
        Initialize the service.

        Args:
            repository: Episode and reference data store
            config: Base engine configuration; system settings stored in the
                    repository are layered over it on every calculation
        """
        self.repository = repository
        self.config = config or EngineConfig()

    def engine(self) -> SettlementEngine:
        """Engine configured with the current system settings."""
        return SettlementEngine(self.config.with_system_settings(self.repository.system_settings()))

    def settle(self, episode: Episode, engine: Optional[SettlementEngine] = None) -> Tuple[SettlementResult, EpisodePatch]:
        """Settle an episode against current reference data without saving."""
        engine = engine or self.engine()
        result = engine.settle(
            episode,
            grd=self.repository.get_grd_rule(episode.grd_code),
            price_entries=self.repository.price_entries(episode.agreement_code),
        )
        return result, engine.diff(episode, result)

    def read_episode(self, episode_id: str) -> SettlementResult:
        """
        Recalculate an episode and persist any derived field that changed.

        Raises:
            EpisodeNotFoundError: If the episode does not exist
        """
        episode = self.repository.get_episode(episode_id)
        result, patch = self.settle(episode)
        if self._refresh(episode, patch):
            logger.info("Episode %s recalculated on read: %s", episode.episode_id, sorted(patch.changes))
        return result

    def list_episodes(self) -> List[SettlementResult]:
        """Recalculate every episode against the latest price table."""
        engine = self.engine()
        results = []
        updated = 0
        for episode in self.repository.list_episodes():
            result, patch = self.settle(episode, engine)
            if self._refresh(episode, patch):
                updated += 1
            results.append(result)

        if updated:
            logger.info("Recalculated %d of %d episodes", updated, len(results))
        return results

    def update_episode(
        self,
        episode_id: str,
        update: EpisodeUpdate,
        expected_version: Optional[int] = None,
    ) -> SettlementResult:
        """
        Apply a partial update and persist every recomputed field.

        Args:
            episode_id: Episode identifier
            update: Fields to change (only explicitly set fields apply)
            expected_version: Version the caller read, for optimistic locking

        Returns:
            SettlementResult for the updated episode

        Raises:
            EpisodeNotFoundError: If the episode does not exist
            OverrideNotAllowedError: If an override is set on an episode within the normal group
            UnknownTechnologyAdjustmentError: If the technology detail is not in the catalog
            ConcurrentUpdateError: If the episode changed since expected_version
        """
        episode = self.repository.get_episode(episode_id)
        changes = self._changes_from_update(episode, update)

        merged = Episode.model_validate({**episode.model_dump(), **changes})
        engine = self.engine()
        result = engine.settle(
            merged,
            grd=self.repository.get_grd_rule(merged.grd_code),
            price_entries=self.repository.price_entries(merged.agreement_code),
        )
        recomputed = merged.model_copy(update=result.derived_fields())
        version = episode.version if expected_version is None else expected_version
        self.repository.save_episode(recomputed, expected_version=version)

        logger.info("Episode %s updated: %s", episode.episode_id, sorted(update.model_fields_set))
        return result

    def import_grd_rules(self, rules: Iterable[GrdRule]) -> int:
        """Upsert GRD rules by code; returns the number imported."""
        count = 0
        for rule in rules:
            self.repository.upsert_grd_rule(rule)
            count += 1
        logger.info("Imported %d GRD rules", count)
        return count

    def import_price_entries(self, entries: Iterable[AgreementPriceEntry]) -> int:
        """Add price entries; returns the number imported."""
        count = 0
        for entry in entries:
            self.repository.add_price_entry(entry)
            count += 1
        logger.info("Imported %d agreement price entries", count)
        return count

    def _refresh(self, episode: Episode, patch: EpisodePatch) -> bool:
        """
        Write recalculated fields back after a read.

        A concurrent write to the same episode wins; the next read
        recalculates from it. Returns True when the patch was saved.
        """
        if patch.is_empty:
            return False
        try:
            self.repository.save_episode(SettlementEngine.apply(episode, patch), expected_version=episode.version)
        except ConcurrentUpdateError as e:
            logger.warning("Skipping recalculated fields for episode %s: %s", episode.episode_id, e)
            return False
        return True

    def _changes_from_update(self, episode: Episode, update: EpisodeUpdate) -> Dict[str, Any]:
        fields = update.model_fields_set
        changes: Dict[str, Any] = {
            name: getattr(update, name)
            for name in fields
            if name not in OVERRIDE_FIELDS
            and not (name in REQUIRED_FLAGS and getattr(update, name) is None)
        }

        outside = changes.get("outside_normal_group", episode.outside_normal_group)
        requested = [
            OVERRIDE_FIELDS[name]
            for name in OVERRIDE_FIELDS
            if name in fields and getattr(update, name) is not None
        ]
        if requested and not outside:
            raise OverrideNotAllowedError(episode.episode_id, requested)

        if outside:
            overrides = episode.overrides.model_dump()
            for name, target in OVERRIDE_FIELDS.items():
                if name in fields:
                    overrides[target] = getattr(update, name)
        else:
            # Overrides only apply outside the normal group
            if episode.overrides.supplied():
                logger.info(
                    "Clearing manual overrides of episode %s: back in the normal group", episode.episode_id
                )
            overrides = EpisodeOverrides().model_dump()
        changes["overrides"] = overrides

        if "rescue_delay_days" in fields and changes["rescue_delay_days"] is None:
            changes["rescue_delay_days"] = 0

        changes.update(self._technology_changes(update))
        return changes

    def _technology_changes(self, update: EpisodeUpdate) -> Dict[str, Any]:
        fields = update.model_fields_set
        if "technology_flag" in fields and update.technology_flag is False:
            return {"technology_flag": False, "technology_detail": None, "technology_amount": 0.0}

        if "technology_detail" not in fields:
            return {}

        detail = (update.technology_detail or "").strip()
        if not detail:
            return {"technology_detail": None, "technology_amount": 0.0}

        adjustment = self.repository.get_technology_adjustment(detail)
        if adjustment is None:
            raise UnknownTechnologyAdjustmentError(detail)

        if adjustment.amount is None:
            logger.warning("Technology adjustment %r has no amount, using 0", detail)
        return {"technology_detail": detail, "technology_amount": adjustment.amount or 0.0}
