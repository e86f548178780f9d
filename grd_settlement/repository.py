"""
Storage interface consumed by the settlement service.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from .exceptions import ConcurrentUpdateError, EpisodeNotFoundError
from .models import Episode
from .reference_data import AgreementPriceEntry, GrdRule, ReferenceCatalog, TechnologyAdjustment


logger = logging.getLogger(__name__)


class EpisodeRepository(Protocol):
    """Reads and writes the records the settlement service needs."""

    def get_episode(self, episode_id: str) -> Episode: ...

    def list_episodes(self) -> List[Episode]: ...

    def save_episode(self, episode: Episode, expected_version: Optional[int] = None) -> Episode: ...

    def get_grd_rule(self, code: Optional[str]) -> Optional[GrdRule]: ...

    def upsert_grd_rule(self, rule: GrdRule) -> None: ...

    def price_entries(self, agreement: Optional[str]) -> List[AgreementPriceEntry]: ...

    def add_price_entry(self, entry: AgreementPriceEntry) -> None: ...

    def get_technology_adjustment(self, label: Optional[str]) -> Optional[TechnologyAdjustment]: ...

    def system_settings(self) -> Dict[str, Any]: ...


class InMemoryEpisodeRepository:
    """
    Episode store backed by a ReferenceCatalog.

    Saves are serialized by a lock and checked against the caller's
    expected version; a mismatch raises ConcurrentUpdateError instead of
    silently overwriting a concurrent write.
    """

    def __init__(self, catalog: Optional[ReferenceCatalog] = None):
        self.catalog = catalog or ReferenceCatalog()
        self._episodes: Dict[str, Episode] = {}
        self._lock = threading.Lock()

    def add_episode(self, episode: Episode) -> None:
        """Insert or replace an episode as-is (import path, no version check)."""
        with self._lock:
            self._episodes[episode.episode_id] = episode

    def get_episode(self, episode_id: str) -> Episode:
        with self._lock:
            episode = self._episodes.get(str(episode_id).strip())
        if episode is None:
            raise EpisodeNotFoundError(episode_id)
        return episode

    def list_episodes(self) -> List[Episode]:
        with self._lock:
            return list(self._episodes.values())

    def save_episode(self, episode: Episode, expected_version: Optional[int] = None) -> Episode:
        """
        Persist an episode and bump its version.

        Args:
            episode: Episode to store
            expected_version: Version the caller read; defaults to episode.version

        Returns:
            The stored episode with its new version

        Raises:
            EpisodeNotFoundError: If the episode does not exist
            ConcurrentUpdateError: If the stored version differs
        """
        expected = episode.version if expected_version is None else expected_version
        with self._lock:
            current = self._episodes.get(episode.episode_id)
            if current is None:
                raise EpisodeNotFoundError(episode.episode_id)
            if current.version != expected:
                raise ConcurrentUpdateError(episode.episode_id, expected, current.version)

            stored = episode.model_copy(update={"version": current.version + 1})
            self._episodes[episode.episode_id] = stored
            return stored

    def get_grd_rule(self, code: Optional[str]) -> Optional[GrdRule]:
        return self.catalog.get_grd_rule(code)

    def upsert_grd_rule(self, rule: GrdRule) -> None:
        self.catalog.add_grd_rule(rule)

    def price_entries(self, agreement: Optional[str]) -> List[AgreementPriceEntry]:
        return self.catalog.prices_for(agreement)

    def add_price_entry(self, entry: AgreementPriceEntry) -> None:
        self.catalog.add_price_entry(entry)

    def get_technology_adjustment(self, label: Optional[str]) -> Optional[TechnologyAdjustment]:
        return self.catalog.get_technology_adjustment(label)

    def system_settings(self) -> Dict[str, Any]:
        return dict(self.catalog.system_settings)

    def load_from_directory(self, directory: Union[str, Path]) -> None:
        """
        Load reference data and episodes.json from a directory.

        Args:
            directory: Path to directory containing data files
        """
        directory = Path(directory)
        self.catalog.load_from_directory(directory)

        episodes_file = directory / "episodes.json"
        if episodes_file.exists():
            with open(episodes_file, 'r') as f:
                for episode_dict in json.load(f):
                    self.add_episode(Episode.model_validate(episode_dict))
            logger.info("Loaded %d episodes from %s", len(self._episodes), episodes_file)
