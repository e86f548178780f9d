"""
GRD Settlement Engine

Calculates the payable amount of hospital episodes billed under a
diagnosis-related group (GRD) reimbursement scheme.
"""

from .models import (
    Episode,
    EpisodeOverrides,
    EpisodePatch,
    EpisodeUpdate,
    SettlementResult,
    StayClassification,
    ValidationStatus,
)
from .config import EngineConfig
from .reference_data import AgreementPriceEntry, GrdRule, ReferenceCatalog, TechnologyAdjustment
from .repository import EpisodeRepository, InMemoryEpisodeRepository
from .settlement import SettlementEngine
from .service import SettlementService

__version__ = "1.0.0"
__all__ = [
    "Episode",
    "EpisodeOverrides",
    "EpisodePatch",
    "EpisodeUpdate",
    "SettlementResult",
    "StayClassification",
    "ValidationStatus",
    "EngineConfig",
    "AgreementPriceEntry",
    "GrdRule",
    "ReferenceCatalog",
    "TechnologyAdjustment",
    "EpisodeRepository",
    "InMemoryEpisodeRepository",
    "SettlementEngine",
    "SettlementService",
]
