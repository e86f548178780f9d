"""
GRD catalog, agreement price table and technology adjustment data.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .models import normalize_agreement_code


logger = logging.getLogger(__name__)


@dataclass
class GrdRule:
    """Diagnosis-related group definition."""

    code: str
    description: str
    weight: Optional[float] = None  # Nominal weight

    # Stay-length cutoff points
    lower_cutoff: Optional[float] = None
    upper_cutoff: Optional[float] = None

    # Stay-length percentiles (days)
    percentile50: Optional[float] = None
    percentile75: Optional[float] = None


@dataclass
class AgreementPriceEntry:
    """One price quotation for an insurance agreement."""

    agreement: str
    price: float
    tier: Optional[str] = None  # T1/T2/T3 for tiered agreements
    effective_start: Optional[date] = None
    effective_end: Optional[date] = None
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self.agreement = normalize_agreement_code(self.agreement) or ""
        if self.tier is not None:
            self.tier = self.tier.strip().upper() or None

    def covers(self, day: date) -> bool:
        """True if the entry's date range contains day (whole days, inclusive)."""
        if self.effective_start is None or self.effective_end is None:
            return False
        return _as_date(self.effective_start) <= _as_date(day) <= _as_date(self.effective_end)


@dataclass
class TechnologyAdjustment:
    """Technology adjustment (AT) catalog entry."""

    label: str
    amount: Optional[float] = 0.0


SETTING_TYPES = ("string", "number", "boolean", "json")


def parse_setting(value: str, value_type: str = "string") -> Any:
    """Parse a stored system setting according to its declared type."""
    if value_type == "number":
        return float(value)
    if value_type == "boolean":
        return value == "true"
    if value_type == "json":
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


class ReferenceCatalog:
    """
    Reference data read by the settlement engine.

    Holds GRD rules (unique by code), agreement price entries (many per
    agreement), the technology adjustment catalog and system settings.
    """

    def __init__(self):
        self.grd_rules: Dict[str, GrdRule] = {}
        self.price_entries: Dict[str, List[AgreementPriceEntry]] = {}
        self.technology_adjustments: Dict[str, TechnologyAdjustment] = {}
        self.system_settings: Dict[str, Any] = {}

    def add_grd_rule(self, rule: GrdRule) -> None:
        """Add or replace a GRD rule (upsert by code)."""
        self.grd_rules[rule.code.strip().upper()] = rule

    def add_price_entry(self, entry: AgreementPriceEntry) -> None:
        """Add a price entry for an agreement."""
        self.price_entries.setdefault(entry.agreement, []).append(entry)

    def add_technology_adjustment(self, adjustment: TechnologyAdjustment) -> None:
        """Add a technology adjustment catalog entry."""
        self.technology_adjustments[adjustment.label.strip()] = adjustment

    def set_setting(self, key: str, value: Any) -> None:
        """Set a system configuration value."""
        self.system_settings[key] = value

    def get_grd_rule(self, code: Optional[str]) -> Optional[GrdRule]:
        """
        Get a GRD rule by code.

        Args:
            code: GRD code

        Returns:
            GrdRule if found, None otherwise
        """
        if not code:
            return None
        return self.grd_rules.get(code.strip().upper())

    def prices_for(self, agreement: Optional[str]) -> List[AgreementPriceEntry]:
        """Price entries for one agreement (empty when unknown)."""
        code = normalize_agreement_code(agreement)
        if code is None:
            return []
        return list(self.price_entries.get(code, []))

    def get_technology_adjustment(self, label: Optional[str]) -> Optional[TechnologyAdjustment]:
        if not label:
            return None
        return self.technology_adjustments.get(label.strip())

    def load_from_directory(self, directory: Union[str, Path]) -> None:
        """
        Load reference data from JSON files in a directory.

        Expected files (each optional):
        - grd_rules.json: list of GRD rules
        - agreement_prices.json: list of price entries
        - technology_adjustments.json: list of technology adjustments
        - system_config.json: list of {key, value, type} settings

        Args:
            directory: Path to directory containing data files
        """
        directory = Path(directory)

        grd_file = directory / "grd_rules.json"
        if grd_file.exists():
            with open(grd_file, 'r') as f:
                for rule_dict in json.load(f):
                    self.add_grd_rule(GrdRule(**rule_dict))

        prices_file = directory / "agreement_prices.json"
        if prices_file.exists():
            with open(prices_file, 'r') as f:
                for entry_dict in json.load(f):
                    self.add_price_entry(_price_entry_from_dict(entry_dict))

        tech_file = directory / "technology_adjustments.json"
        if tech_file.exists():
            with open(tech_file, 'r') as f:
                for tech_dict in json.load(f):
                    self.add_technology_adjustment(TechnologyAdjustment(**tech_dict))

        config_file = directory / "system_config.json"
        if config_file.exists():
            with open(config_file, 'r') as f:
                for setting in json.load(f):
                    value_type = setting.get("type", "string")
                    if value_type not in SETTING_TYPES:
                        logger.warning("Unknown setting type %r for key %s", value_type, setting["key"])
                        value_type = "string"
                    self.set_setting(setting["key"], parse_setting(str(setting["value"]), value_type))

        logger.info(
            "Loaded %d GRD rules, %d price entries, %d technology adjustments from %s",
            len(self.grd_rules),
            sum(len(entries) for entries in self.price_entries.values()),
            len(self.technology_adjustments),
            directory,
        )


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return date.fromisoformat(value[:10])


def _price_entry_from_dict(data: Dict[str, Any]) -> AgreementPriceEntry:
    created = data.get("created_at")
    return AgreementPriceEntry(
        agreement=data["agreement"],
        price=float(data["price"]),
        tier=data.get("tier"),
        effective_start=_parse_date(data.get("effective_start")),
        effective_end=_parse_date(data.get("effective_end")),
        created_at=datetime.fromisoformat(created) if created else datetime.now(),
    )
