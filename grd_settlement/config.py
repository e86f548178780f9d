"""
Engine configuration and fallback-chain helpers.
"""

import math
from typing import Any, Callable, Mapping, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# System configuration keys understood by the engine
PERCENTILE50_KEY = "percentil50"
PERCENTILE75_KEY = "diasPercentil75"
UPPER_CUTOFF_KEY = "puntoCorteSuperior"


class EngineConfig(BaseSettings):
    """
    Defaults used when GRD reference data is incomplete.

    Values can be set through the environment, e.g.
    GRD_SETTLEMENT_DEFAULT_PERCENTILE50=4.
    """

    model_config = SettingsConfigDict(env_prefix="GRD_SETTLEMENT_", frozen=True)

    default_percentile50: Optional[float] = Field(
        None,
        description="System-wide 50th percentile stay length (grace period component)",
        allow_inf_nan=False,
    )
    default_percentile75: Optional[float] = Field(
        None,
        description="System-wide 75th percentile stay length (reference days)",
        allow_inf_nan=False,
    )
    default_upper_cutoff: Optional[float] = Field(
        None,
        description="System-wide upper cutoff used when the GRD has none",
        allow_inf_nan=False,
    )
    min_reference_days: float = Field(
        1.0,
        description="Reference days used when no 75th percentile can be resolved",
        gt=0,
        allow_inf_nan=False,
    )
    change_tolerance: float = Field(
        0.01,
        description="Amounts closer than this are not reported as changed",
        ge=0,
        allow_inf_nan=False,
    )

    def with_system_settings(self, settings: Mapping[str, Any]) -> "EngineConfig":
        """
        Layer system configuration values over this config.

        Only recognized keys are used; values that are not positive numbers
        leave the current default in place.
        """
        overrides = {}
        for key, field in (
            (PERCENTILE50_KEY, "default_percentile50"),
            (PERCENTILE75_KEY, "default_percentile75"),
            (UPPER_CUTOFF_KEY, "default_upper_cutoff"),
        ):
            value = positive_number(settings.get(key))
            if value is not None:
                overrides[field] = value

        if not overrides:
            return self
        return self.model_copy(update=overrides)


def positive_number(value: Any) -> Optional[float]:
    """Return value as a float if it is a finite number > 0, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def first_present(*lookups: Callable[[], Any]) -> Optional[float]:
    """
    Evaluate lookups in order and return the first usable value.

    Each lookup is a zero-argument callable so later sources are only read
    when earlier ones come up empty. A value is usable when it is a finite
    number greater than zero.

    Example:
        >>> first_present(lambda: grd.percentile75, lambda: grd.upper_cutoff,
        ...               lambda: config.default_percentile75)
    """
    for lookup in lookups:
        value = positive_number(lookup())
        if value is not None:
            return value
    return None
