"""Analysis helpers — pandas-based views over the training corpus."""

from __future__ import annotations

from typing import Any, Sequence

import pandas as pd

from behavioral_emotion.affect.features import FEATURE_GROUPS, FEATURE_NAMES
from behavioral_emotion.models import TrainingSample
from behavioral_emotion.storage.repository import TrainingStore


def samples_to_dataframe(samples: Sequence[TrainingSample]) -> pd.DataFrame:
    """One row per sample, indexed by timestamp.

    Columns: ``id``, ``emotion``, ``label`` (corrected label when present),
    ``corrected_emotion``, ``confidence``, ``feedback_type`` and one column
    per entry of :data:`FEATURE_NAMES`.
    """
    records: list[dict[str, Any]] = []
    for s in samples:
        row: dict[str, Any] = {
            "id": s.id,
            "timestamp": s.timestamp,
            "emotion": s.emotion.value,
            "label": s.training_label.value,
            "corrected_emotion": s.corrected_emotion.value if s.corrected_emotion else None,
            "confidence": s.confidence,
            "feedback_type": s.feedback_type.value if s.feedback_type else None,
        }
        row.update(zip(FEATURE_NAMES, s.features))
        records.append(row)

    df = pd.DataFrame(records)
    if not df.empty:
        df["timestamp"] = pd.to_datetime(df["timestamp"])
        df = df.set_index("timestamp").sort_index()
    return df


async def load_samples(limit: int = 1000, *, store: TrainingStore | None = None) -> pd.DataFrame:
    store = store or TrainingStore()
    return samples_to_dataframe(await store.get_samples(limit=limit))


def label_distribution(df: pd.DataFrame, column: str = "label") -> dict[str, float]:
    """Share of each label (0–1), most frequent first."""
    if df.empty or column not in df.columns:
        return {}
    shares = df[column].value_counts(normalize=True)
    return {str(k): round(float(v), 4) for k, v in shares.items()}


def feedback_agreement(df: pd.DataFrame) -> pd.DataFrame:
    """Per predicted emotion: how often feedback confirmed or overrode it.

    Only rows carrying feedback are counted.  Columns: ``correct``,
    ``incorrect``, ``corrected``, ``total`` and ``agreement`` (share of
    ``correct``).
    """
    columns = ["correct", "incorrect", "corrected"]
    if df.empty or "feedback_type" not in df.columns:
        return pd.DataFrame(columns=[*columns, "total", "agreement"])

    rated = df[df["feedback_type"].notna()]
    table = pd.crosstab(rated["emotion"], rated["feedback_type"]).reindex(columns=columns, fill_value=0)
    table["total"] = table[columns].sum(axis=1)
    table["agreement"] = (table["correct"] / table["total"]).round(3)
    return table


def group_means(df: pd.DataFrame, by: str = "label") -> pd.DataFrame:
    """Mean of every feature group per label (group mean of member features)."""
    if df.empty:
        return pd.DataFrame()
    out = pd.DataFrame(index=sorted(df[by].unique()))
    for group, span in FEATURE_GROUPS.items():
        members = list(FEATURE_NAMES[span])
        present = [m for m in members if m in df.columns]
        if present:
            out[group] = df.groupby(by)[present].mean().mean(axis=1)
    return out
