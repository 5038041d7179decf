"""Emotion pipeline orchestrator — collector window → features → prediction → store.

:class:`EmotionPipeline` is registered as the collector's window callback
and is wired into the FastAPI lifespan.  For every closed window it:

1. Extracts the 40-value feature vector
2. Runs the classifier
3. Persists the inference as a training sample
4. Keeps the result as ``latest`` for consumers

A storage failure is logged and the prediction is still served.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

import structlog
from pydantic import BaseModel, Field

from behavioral_emotion.affect.classifier import EmotionClassifier
from behavioral_emotion.affect.features import extract_features, normalize_features
from behavioral_emotion.collectors.events import EventCollector, WindowSnapshot
from behavioral_emotion.models import Emotion, FeedbackType, Prediction, coerce_features, utc_now
from behavioral_emotion.storage.repository import TrainingStore

logger = structlog.get_logger(__name__)


class InferenceResult(BaseModel):
    """One served prediction together with the sample it was stored as."""

    prediction: Prediction
    features: list[float]
    sample_id: int | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class EmotionPipeline:
    """Orchestrator for the behavioral emotion subsystem.

    Parameters
    ----------
    collector : EventCollector
        Source of closed windows.
    classifier : EmotionClassifier
        Must be initialised before windows arrive; otherwise predictions
        fall back to neutral.
    store : TrainingStore
        Receives every inference as a training sample.
    context : dict, optional
        Static metadata attached to every stored sample (page, product, ...).
    """

    def __init__(
        self,
        collector: EventCollector,
        classifier: EmotionClassifier,
        store: TrainingStore,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.collector = collector
        self.classifier = classifier
        self.store = store
        self.context = dict(context or {})
        self._latest: InferenceResult | None = None
        self._windows = 0
        self._store_failures = 0

    async def start(self) -> None:
        await self.collector.start(self.on_window)

    async def stop(self) -> None:
        await self.collector.stop()

    async def on_window(self, snapshot: WindowSnapshot | None) -> InferenceResult | None:
        """Collector callback: run one window through the pipeline."""
        features = extract_features(snapshot)
        if features is None:
            return None
        self._windows += 1
        context = {
            **self.context,
            "event_count": snapshot.event_count,
            "session_duration_ms": snapshot.session_duration_ms,
        }
        return await self._infer(features, context, persist=True)

    async def predict_features(
        self,
        features: Sequence[float],
        context: dict[str, Any] | None = None,
        *,
        persist: bool = True,
    ) -> InferenceResult:
        """Run an externally computed feature vector through the pipeline."""
        features = normalize_features(coerce_features(features))
        return await self._infer(features, {**self.context, **(context or {})}, persist=persist)

    async def _infer(self, features: list[float], context: dict[str, Any], *, persist: bool) -> InferenceResult:
        prediction = self.classifier.predict(features)
        sample_id: int | None = None
        if persist:
            try:
                sample_id = await self.store.store_sample(
                    features, prediction.emotion, prediction.confidence, context
                )
            except Exception as exc:
                self._store_failures += 1
                logger.error("pipeline.store_failed", error=str(exc))

        result = InferenceResult(prediction=prediction, features=features, sample_id=sample_id)
        self._latest = result
        logger.info(
            "pipeline.inference",
            emotion=prediction.emotion.value,
            confidence=prediction.confidence,
            sample_id=sample_id,
            fallback=prediction.fallback,
        )
        return result

    async def submit_feedback(
        self,
        sample_id: int,
        feedback_type: FeedbackType | str,
        corrected_emotion: Emotion | str | None = None,
    ) -> bool:
        return await self.store.store_feedback(sample_id, feedback_type, corrected_emotion)

    @property
    def latest(self) -> InferenceResult | None:
        return self._latest

    @property
    def latest_features(self) -> list[float] | None:
        return self._latest.features if self._latest else None

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "windows_processed": self._windows,
            "store_failures": self._store_failures,
            "classifier_ready": self.classifier.is_ready,
            "training_count": self.classifier.training_count,
            "collector": self.collector.stats,
        }
