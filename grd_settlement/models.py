"""
Data models for hospital episodes and their GRD settlement.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


DateLike = Union[datetime, date]


class StayClassification(str, Enum):
    """Length-of-stay classification against a GRD's cutoff points."""

    INLIER = "Inlier"
    OUTLIER_SUPERIOR = "Outlier Superior"
    OUTLIER_INFERIOR = "Outlier Inferior"


class ValidationStatus(str, Enum):
    """Review status of an episode."""

    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


def normalize_agreement_code(value: Optional[str]) -> Optional[str]:
    """Trim and upper-case an agreement code; blank codes become None."""
    if value is None:
        return None
    value = str(value).strip().upper()
    return value or None


class EpisodeOverrides(BaseModel):
    """Manual amounts for episodes outside the normal group classification."""

    group_value: Optional[float] = Field(None, description="Manual group value", ge=0, allow_inf_nan=False)
    final_amount: Optional[float] = Field(None, description="Manual final amount", ge=0, allow_inf_nan=False)

    def supplied(self) -> List[str]:
        """Names of the overrides that carry a value."""
        return [name for name in ("group_value", "final_amount") if getattr(self, name) is not None]


class Episode(BaseModel):
    """
    One hospitalization record.

    Input attributes come from import or manual entry. The derived fields
    hold the last values persisted for this episode and are recomputed by
    the engine on every read and update.
    """

    episode_id: str = Field(..., description="Episode identifier")
    patient_id: Optional[str] = Field(None, description="Linked patient record")
    admission_date: Optional[DateLike] = Field(None, description="Admission date")
    discharge_date: Optional[DateLike] = Field(None, description="Discharge date")
    grd_code: Optional[str] = Field(None, description="Assigned GRD code")
    agreement_code: Optional[str] = Field(None, description="Insurance agreement (convenio) code")
    group_weight: Optional[float] = Field(None, description="Recorded GRD weight", allow_inf_nan=False)

    # Technology adjustment (AT)
    technology_flag: bool = Field(False, description="Technology adjustment applies (S/N)")
    technology_detail: Optional[str] = Field(None, description="Technology adjustment label")
    technology_amount: Optional[float] = Field(None, description="Technology adjustment amount", allow_inf_nan=False)

    rescue_delay_days: int = Field(0, description="Days waiting for rescue/transfer", ge=0)
    manual_delay_payment: Optional[float] = Field(
        None,
        description="Manually entered rescue-delay payment, used when no formula applies",
        ge=0,
        allow_inf_nan=False,
    )
    manual_outlier_payment: Optional[float] = Field(
        None,
        description="Manually entered superior-outlier payment (always superseded by the formula)",
        ge=0,
        allow_inf_nan=False,
    )

    outside_normal_group: bool = Field(False, description="Episode is outside the normal group classification")
    overrides: EpisodeOverrides = Field(default_factory=EpisodeOverrides)
    validated: Optional[bool] = Field(None, description="True approved, False rejected, None pending")
    version: int = Field(0, description="Optimistic concurrency version", ge=0)

    # Derived fields (owned by the engine)
    length_of_stay: Optional[int] = None
    classification: Optional[StayClassification] = None
    base_price: Optional[float] = Field(None, allow_inf_nan=False)
    group_value: Optional[float] = Field(None, allow_inf_nan=False)
    delay_payment: Optional[float] = Field(None, allow_inf_nan=False)
    outlier_payment: Optional[float] = Field(None, allow_inf_nan=False)
    final_amount: Optional[float] = Field(None, allow_inf_nan=False)

    @field_validator('episode_id')
    @classmethod
    def validate_episode_id(cls, v: str) -> str:
        """Validate episode identifier."""
        if not v or not v.strip():
            raise ValueError("Episode ID cannot be empty")
        return v.strip()

    @field_validator('agreement_code')
    @classmethod
    def validate_agreement_code(cls, v: Optional[str]) -> Optional[str]:
        return normalize_agreement_code(v)

    @field_validator('grd_code', 'technology_detail')
    @classmethod
    def validate_optional_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def validation_status(self) -> ValidationStatus:
        if self.validated is None:
            return ValidationStatus.PENDING
        return ValidationStatus.APPROVED if self.validated else ValidationStatus.REJECTED


class EpisodeUpdate(BaseModel):
    """
    Partial update of an episode.

    Only fields explicitly set are applied; every derived field is
    recomputed afterwards regardless of which field was edited.
    """

    admission_date: Optional[DateLike] = None
    discharge_date: Optional[DateLike] = None
    grd_code: Optional[str] = None
    agreement_code: Optional[str] = None
    group_weight: Optional[float] = Field(None, allow_inf_nan=False)
    technology_flag: Optional[bool] = None
    technology_detail: Optional[str] = None
    rescue_delay_days: Optional[int] = Field(None, ge=0)
    manual_delay_payment: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    manual_outlier_payment: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    outside_normal_group: Optional[bool] = None
    group_value_override: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    final_amount_override: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    validated: Optional[bool] = None

    @field_validator('technology_flag', mode='before')
    @classmethod
    def validate_technology_flag(cls, v: Any) -> Any:
        """Accept the S/N spelling used by billing staff."""
        if isinstance(v, str):
            flag = v.strip().upper()
            if flag not in ("S", "N"):
                raise ValueError("Technology flag must be 'S' or 'N'")
            return flag == "S"
        return v

    @field_validator('agreement_code')
    @classmethod
    def validate_agreement_code(cls, v: Optional[str]) -> Optional[str]:
        return normalize_agreement_code(v)


class SettlementResult(BaseModel):
    """Derived fields computed for one episode."""

    episode_id: str
    agreement_code: Optional[str] = None
    grd_code: Optional[str] = None

    length_of_stay: int = 0
    classification: Optional[StayClassification] = None
    within_norm: Optional[bool] = Field(None, description="True when classified as Inlier")

    tier: Optional[str] = Field(None, description="Weight tier for tiered agreements")
    base_price: Optional[float] = Field(None, description="Resolved base price, None when not found")
    group_value: float = 0.0
    technology_amount: float = 0.0
    delay_payment: float = 0.0
    outlier_payment: float = 0.0
    final_amount: float = 0.0

    notes: List[str] = Field(default_factory=list)

    def add_note(self, note: str) -> None:
        """Add a note to the settlement."""
        self.notes.append(note)

    def derived_fields(self) -> Dict[str, Any]:
        """Fields persisted back onto the episode."""
        return {
            "length_of_stay": self.length_of_stay,
            "classification": self.classification,
            "base_price": self.base_price,
            "group_value": self.group_value,
            "delay_payment": self.delay_payment,
            "outlier_payment": self.outlier_payment,
            "final_amount": self.final_amount,
        }


class EpisodePatch(BaseModel):
    """Derived fields whose value differs from what the episode has stored."""

    episode_id: str
    changes: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.changes
