"""Data export utilities for offline analysis of the training corpus."""

from __future__ import annotations

import csv
import json
from pathlib import Path

import structlog

from behavioral_emotion.affect.features import FEATURE_NAMES
from behavioral_emotion.storage.repository import TrainingStore

logger = structlog.get_logger(__name__)

_META_COLUMNS = ["id", "timestamp", "emotion", "corrected_emotion", "confidence", "feedback_type"]


async def export_samples_csv(
    output_path: str | Path,
    *,
    limit: int = 1000,
    only_with_feedback: bool = False,
    store: TrainingStore | None = None,
) -> Path:
    """Write stored samples to CSV, one column per named feature.

    Returns the resolved output path.
    """
    store = store or TrainingStore()
    samples = await store.get_samples(limit=limit, only_with_feedback=only_with_feedback)

    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    with output.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(_META_COLUMNS + list(FEATURE_NAMES))
        for s in samples:
            features = (list(s.features) + [0.0] * len(FEATURE_NAMES))[: len(FEATURE_NAMES)]
            writer.writerow([
                s.id,
                s.timestamp.isoformat(),
                s.emotion.value,
                s.corrected_emotion.value if s.corrected_emotion else "",
                s.confidence,
                s.feedback_type.value if s.feedback_type else "",
                *features,
            ])

    logger.info("export.csv_written", path=str(output), rows=len(samples))
    return output


async def export_samples_json(
    output_path: str | Path,
    *,
    store: TrainingStore | None = None,
) -> Path:
    """Write the full :meth:`TrainingStore.export_all` backup to JSON."""
    store = store or TrainingStore()
    blob = await store.export_all()

    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(blob, indent=2), encoding="utf-8")

    logger.info("export.json_written", path=str(output), rows=len(blob["samples"]))
    return output
