"""
Tabular summaries of settlement results.
"""

from typing import Iterable

import pandas as pd

from .models import SettlementResult


SETTLEMENT_COLUMNS = [
    "episode_id",
    "agreement_code",
    "grd_code",
    "length_of_stay",
    "classification",
    "tier",
    "base_price",
    "group_value",
    "technology_amount",
    "delay_payment",
    "outlier_payment",
    "final_amount",
]

AMOUNT_COLUMNS = ["group_value", "technology_amount", "delay_payment", "outlier_payment", "final_amount"]


def settlements_frame(results: Iterable[SettlementResult]) -> pd.DataFrame:
    """One row per settled episode."""
    rows = []
    for result in results:
        row = result.model_dump(include=set(SETTLEMENT_COLUMNS))
        if result.classification is not None:
            row["classification"] = result.classification.value
        rows.append(row)
    return pd.DataFrame(rows, columns=SETTLEMENT_COLUMNS)


def summarize_by_agreement(frame: pd.DataFrame) -> pd.DataFrame:
    """
    Episode counts and amount totals per agreement.

    Episodes without an agreement are grouped under "(none)".
    """
    if frame.empty:
        return pd.DataFrame(columns=["agreement_code", "episodes"] + AMOUNT_COLUMNS)

    grouped = frame.assign(agreement_code=frame["agreement_code"].fillna("(none)"))
    summary = grouped.groupby("agreement_code").agg(
        episodes=("episode_id", "count"),
        **{column: (column, "sum") for column in AMOUNT_COLUMNS},
    )
    return summary.reset_index().sort_values("agreement_code", ignore_index=True)
