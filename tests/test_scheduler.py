"""Tests for the retraining scheduler."""

from __future__ import annotations

import asyncio

import pytest

from behavioral_emotion.affect.features import FEATURE_NAMES
from behavioral_emotion.affect.synthetic import PATTERNS
from behavioral_emotion.models import Emotion, parse_emotion
from behavioral_emotion.scheduler.service import RetrainingScheduler, SchedulerState

from conftest import FakeClock


class RecordingClassifier:
    """Stands in for the classifier; remembers every label it was trained on."""

    def __init__(self, fail: bool = False) -> None:
        self.labels: list[Emotion] = []
        self.saves = 0
        self.fail = fail

    @property
    def training_count(self) -> int:
        return len(self.labels)

    async def train(self, features, label) -> bool:
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("gradient exploded")
        emotion = parse_emotion(label)
        if emotion is None:
            return False
        self.labels.append(emotion)
        return True

    async def save(self) -> None:
        self.saves += 1


@pytest.fixture
def fake_classifier() -> RecordingClassifier:
    return RecordingClassifier()


@pytest.fixture
def scheduler_clock() -> FakeClock:
    return FakeClock(start=1000.0)


@pytest.fixture
def scheduler(fake_classifier, store, stats_repo, scheduler_clock) -> RetrainingScheduler:
    return RetrainingScheduler(
        fake_classifier,
        store,
        stats_repo,
        interval_minutes=60,
        min_interval_seconds=300,
        min_samples=3,
        feedback_batch=50,
        recent_batch=50,
        clock=scheduler_clock,
    )


async def _seed(store) -> list[int]:
    """Four samples: Happy, Angry, Happy, Neutral; the first corrected to Sad, the third confirmed."""
    ids = [
        await store.store_sample([0.1] * 40, label, 60)
        for label in (Emotion.HAPPY, Emotion.ANGRY, Emotion.HAPPY, Emotion.NEUTRAL)
    ]
    await store.store_feedback(ids[0], "corrected", Emotion.SAD)
    await store.store_feedback(ids[2], "correct")
    return ids


# ── Guards ────────────────────────────────────────────────────


class TestGuards:
    @pytest.mark.asyncio
    async def test_too_few_samples(self, scheduler, store, fake_classifier):
        await store.store_sample([0.1] * 40, Emotion.HAPPY, 60)
        assert await scheduler.tick(force=True) is False
        assert fake_classifier.labels == []
        assert scheduler.stats["skipped_samples"] == 1
        assert scheduler.training_stats is None

    @pytest.mark.asyncio
    async def test_concurrent_ticks_run_once(self, scheduler, store, fake_classifier):
        await _seed(store)
        results = await asyncio.gather(scheduler.tick(), scheduler.tick())
        assert results == [True, False]
        assert len(fake_classifier.labels) == 4
        assert scheduler.stats["skipped_busy"] == 1
        assert scheduler.state is SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_min_interval_and_force(self, scheduler, store, scheduler_clock):
        await _seed(store)
        assert await scheduler.tick() is True
        scheduler_clock.advance(299)
        assert await scheduler.tick() is False
        assert scheduler.stats["skipped_interval"] == 1
        assert await scheduler.tick(force=True) is True
        scheduler_clock.advance(300)
        assert await scheduler.tick() is True
        assert scheduler.stats["total_runs"] == 3

    @pytest.mark.asyncio
    async def test_error_returns_to_idle(self, store, stats_repo, scheduler_clock):
        await _seed(store)
        scheduler = RetrainingScheduler(
            RecordingClassifier(fail=True), store, stats_repo, min_samples=1, clock=scheduler_clock
        )
        assert await scheduler.tick(force=True) is False
        assert scheduler.state is SchedulerState.IDLE
        assert "gradient exploded" in scheduler.stats["last_error"]
        assert await stats_repo.get() is None


# ── Retraining ────────────────────────────────────────────────


class TestRetrain:
    @pytest.mark.asyncio
    async def test_feedback_samples_first_with_corrected_labels(self, scheduler, store, fake_classifier):
        await _seed(store)
        assert await scheduler.tick(force=True) is True
        assert fake_classifier.labels == [Emotion.HAPPY, Emotion.SAD, Emotion.NEUTRAL, Emotion.ANGRY]
        assert fake_classifier.saves == 1

    @pytest.mark.asyncio
    async def test_batches_are_capped(self, store, stats_repo, fake_classifier, scheduler_clock):
        await _seed(store)
        scheduler = RetrainingScheduler(
            fake_classifier,
            store,
            stats_repo,
            min_samples=1,
            feedback_batch=1,
            recent_batch=1,
            clock=scheduler_clock,
        )
        await scheduler.tick(force=True)
        assert fake_classifier.labels == [Emotion.HAPPY, Emotion.NEUTRAL]

    @pytest.mark.asyncio
    async def test_publishes_statistics(self, scheduler, store, stats_repo):
        await _seed(store)
        await scheduler.tick(force=True)

        published = await stats_repo.get()
        assert published == scheduler.training_stats
        assert published.total_samples == 4
        assert published.total_feedback == 2
        assert published.last_training_sample_count == 4
        assert published.training_count == 4
        assert published.emotion_distribution == {"Happy": 2, "Angry": 1, "Neutral": 1}
        assert published.last_training_time is not None

    @pytest.mark.asyncio
    async def test_corrected_samples_teach_the_real_classifier(self, store, stats_repo, classifier, scheduler_clock):
        features = [0.15] * len(FEATURE_NAMES)
        for name in PATTERNS[Emotion.HAPPY]:
            features[FEATURE_NAMES.index(name)] = 1.0

        for _ in range(100):
            sample_id = await store.store_sample(features, Emotion.NEUTRAL, 40)
            await store.store_feedback(sample_id, "corrected", Emotion.HAPPY)

        scheduler = RetrainingScheduler(
            classifier,
            store,
            stats_repo,
            min_samples=10,
            feedback_batch=100,
            recent_batch=50,
            clock=scheduler_clock,
        )
        assert await scheduler.tick(force=True) is True
        assert scheduler.training_stats.last_training_sample_count == 100

        prediction = classifier.predict(features)
        assert prediction.emotion is Emotion.HAPPY
        assert prediction.confidence > 60


# ── Implicit feedback ─────────────────────────────────────────


class TestImplicit:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "action, expected",
        [
            ("purchase", Emotion.HAPPY),
            ("add_to_cart", Emotion.HAPPY),
            ("quick_exit", Emotion.DISGUSTED),
            ("close_tab", Emotion.DISGUSTED),
            ("long_hesitation", Emotion.ANXIOUS),
            ("rapid_comparison", Emotion.SURPRISED),
        ],
    )
    async def test_action_mapping(self, scheduler, fake_classifier, action, expected):
        assert await scheduler.train_with_implicit_feedback([0.2] * 40, action) is expected
        assert fake_classifier.labels == [expected]
        assert scheduler.stats["implicit_trained"] == 1

    @pytest.mark.asyncio
    async def test_unknown_action_is_ignored(self, scheduler, fake_classifier):
        assert await scheduler.train_with_implicit_feedback([0.2] * 40, "bookmark") is None
        assert fake_classifier.labels == []

    @pytest.mark.asyncio
    async def test_missing_features_are_ignored(self, scheduler, fake_classifier):
        assert await scheduler.train_with_implicit_feedback(None, "purchase") is None
        assert fake_classifier.labels == []


# ── Lifecycle ─────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_loop_ticks_immediately(self, scheduler, store, fake_classifier):
        await _seed(store)
        await scheduler.start()
        assert scheduler.is_running
        for _ in range(200):
            if scheduler.stats["total_runs"]:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.stats["total_runs"] == 1
        assert len(fake_classifier.labels) == 4
