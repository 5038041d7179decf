"""Retraining scheduler — periodic incremental training from the stored corpus.

Architecture
~~~~~~~~~~~~
The ``RetrainingScheduler`` runs as a background component within the
FastAPI lifespan.  Every ``scheduler_interval_minutes`` it ticks:

1. Skips when the previous run started less than
   ``scheduler_min_interval_seconds`` ago, or when the store holds fewer
   than ``scheduler_min_samples`` samples.
2. Pulls up to ``scheduler_feedback_batch`` samples carrying feedback,
   then up to ``scheduler_recent_batch`` samples without it.
3. Trains the classifier once per sample in that order, on the corrected
   label where one exists.
4. Publishes a :class:`TrainingStats` snapshot.

Re-entry is prevented by the IDLE/TRAINING flag: a tick that arrives while
a run is in progress returns immediately.  The flag is set before the first
await, so two ticks scheduled back to back can never both run.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Sequence

import structlog

from behavioral_emotion.affect.classifier import EmotionClassifier
from behavioral_emotion.config import get_settings
from behavioral_emotion.models import (
    IMPLICIT_ACTION_EMOTIONS,
    Emotion,
    ImplicitAction,
    TrainingStats,
    utc_now,
)
from behavioral_emotion.storage.repository import TrainingStatsRepository, TrainingStore

logger = structlog.get_logger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    TRAINING = "training"


class RetrainingScheduler:
    """Background service for periodic classifier retraining.

    Integration::

        scheduler = RetrainingScheduler(classifier, store)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        classifier: EmotionClassifier,
        store: TrainingStore,
        stats_repo: TrainingStatsRepository | None = None,
        *,
        interval_minutes: float | None = None,
        min_interval_seconds: float | None = None,
        min_samples: int | None = None,
        feedback_batch: int | None = None,
        recent_batch: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self._classifier = classifier
        self._store = store
        self._stats_repo = stats_repo
        self._interval = (
            interval_minutes if interval_minutes is not None else settings.scheduler_interval_minutes
        )
        self._min_interval = (
            min_interval_seconds
            if min_interval_seconds is not None
            else settings.scheduler_min_interval_seconds
        )
        self._min_samples = min_samples if min_samples is not None else settings.scheduler_min_samples
        self._feedback_batch = (
            feedback_batch if feedback_batch is not None else settings.scheduler_feedback_batch
        )
        self._recent_batch = recent_batch if recent_batch is not None else settings.scheduler_recent_batch
        self._clock = clock

        self._state = SchedulerState.IDLE
        self._last_run: float | None = None
        self._running = False
        self._task: asyncio.Task | None = None
        self._training_stats: TrainingStats | None = None

        self._stats = {
            "total_runs": 0,
            "skipped_busy": 0,
            "skipped_interval": 0,
            "skipped_samples": 0,
            "implicit_trained": 0,
            "last_error": None,
        }

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start the periodic retraining loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "scheduler.started",
            interval_minutes=self._interval,
            min_samples=self._min_samples,
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("scheduler.stopped")

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def training_stats(self) -> TrainingStats | None:
        """Last published statistics (``None`` before the first run)."""
        return self._training_stats

    @property
    def stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "state": self._state.value,
            "running": self._running,
            "last_training_time": (
                self._training_stats.last_training_time.isoformat()
                if self._training_stats and self._training_stats.last_training_time
                else None
            ),
        }

    # ── Main loop ─────────────────────────────────────────────

    async def _run_loop(self) -> None:
        """Tick forever; the first tick happens immediately."""
        while self._running:
            await self.tick()
            await asyncio.sleep(self._interval * 60)

    async def tick(self, force: bool = False) -> bool:
        """Run one retraining cycle if the guards allow it.

        *force* bypasses the inter-run interval, never the sample threshold.
        Returns ``True`` when a run completed.
        """
        if self._state is SchedulerState.TRAINING:
            self._stats["skipped_busy"] += 1
            logger.debug("scheduler.busy")
            return False
        self._state = SchedulerState.TRAINING
        try:
            now = self._clock()
            if not force and self._last_run is not None and now - self._last_run < self._min_interval:
                self._stats["skipped_interval"] += 1
                return False

            total = await self._store.count()
            if total < self._min_samples:
                self._stats["skipped_samples"] += 1
                logger.debug("scheduler.not_enough_samples", total=total, required=self._min_samples)
                return False

            self._last_run = now
            trained = await self._retrain()
            await self._publish(trained)
            self._stats["total_runs"] += 1
            return True
        except Exception as exc:
            self._stats["last_error"] = str(exc)
            logger.exception("scheduler.retrain_error")
            return False
        finally:
            self._state = SchedulerState.IDLE

    async def _retrain(self) -> int:
        with_feedback = await self._store.get_samples(limit=self._feedback_batch, only_with_feedback=True)
        without_feedback = await self._store.get_samples_without_feedback(limit=self._recent_batch)
        batch = [*with_feedback, *without_feedback]
        logger.info(
            "scheduler.retrain_started",
            with_feedback=len(with_feedback),
            without_feedback=len(without_feedback),
        )

        trained = 0
        for sample in batch:
            if await self._classifier.train(sample.features, sample.training_label):
                trained += 1
        await self._classifier.save()
        return trained

    async def _publish(self, sample_count: int) -> None:
        summary = await self._store.get_statistics()
        stats = TrainingStats(
            total_samples=summary.total_samples,
            total_feedback=summary.total_feedback,
            last_training_time=utc_now(),
            avg_confidence=summary.avg_confidence,
            emotion_distribution=summary.emotion_counts,
            last_training_sample_count=sample_count,
            training_count=self._classifier.training_count,
        )
        self._training_stats = stats
        if self._stats_repo is not None:
            try:
                await self._stats_repo.publish(stats)
            except Exception as exc:
                logger.error("scheduler.publish_failed", error=str(exc))
        logger.info(
            "scheduler.retrain_complete",
            samples=sample_count,
            total_samples=stats.total_samples,
            training_count=stats.training_count,
        )

    # ── Implicit feedback ─────────────────────────────────────

    async def train_with_implicit_feedback(
        self,
        features: Sequence[float] | None,
        action: ImplicitAction | str,
    ) -> Emotion | None:
        """Map a browsing action to an emotion and train on it immediately.

        Returns the emotion trained on, or ``None`` for an unknown action or
        missing features.
        """
        try:
            parsed = ImplicitAction(action)
            emotion = IMPLICIT_ACTION_EMOTIONS[parsed]
        except ValueError:
            logger.warning("scheduler.unknown_action", action=str(action))
            return None
        if features is None:
            return None
        if not await self._classifier.train(features, emotion):
            return None
        self._stats["implicit_trained"] += 1
        logger.info("scheduler.implicit_trained", action=parsed.value, emotion=emotion.value)
        return emotion
