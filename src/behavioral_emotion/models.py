"""Shared Pydantic models used across the package."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Sequence

from pydantic import BaseModel, Field

FEATURE_COUNT = 40


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in SQLite."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(moment: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(UTC).replace(tzinfo=None)


def coerce_features(values: Sequence[Any]) -> list[float]:
    """Pad with zeros or truncate to :data:`FEATURE_COUNT` values.

    Non-numeric and non-finite entries become 0.
    """
    out: list[float] = []
    for value in list(values)[:FEATURE_COUNT]:
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = 0.0
        out.append(number if math.isfinite(number) else 0.0)
    out.extend([0.0] * (FEATURE_COUNT - len(out)))
    return out


# ── Enums ─────────────────────────────────────────────────────

class Emotion(str, Enum):
    """The fixed label set of the classifier.

    Declaration order is the order of the network's output units.
    """

    HAPPY = "Happy"
    SAD = "Sad"
    ANGRY = "Angry"
    ANXIOUS = "Anxious"
    NEUTRAL = "Neutral"
    SURPRISED = "Surprised"
    FEARFUL = "Fearful"
    DISGUSTED = "Disgusted"


EMOTIONS: tuple[Emotion, ...] = tuple(Emotion)


def parse_emotion(value: Any) -> Emotion | None:
    """Return the :class:`Emotion` for *value*, or ``None`` if it is not a label."""
    if isinstance(value, Emotion):
        return value
    try:
        return Emotion(value)
    except ValueError:
        return None


class FeedbackType(str, Enum):
    """How a human (or an external signal) judged a stored prediction."""

    CORRECT = "correct"
    INCORRECT = "incorrect"
    CORRECTED = "corrected"


class ImplicitAction(str, Enum):
    """Browsing actions that imply an emotion without asking the user."""

    PURCHASE = "purchase"
    ADD_TO_CART = "add_to_cart"
    QUICK_EXIT = "quick_exit"
    CLOSE_TAB = "close_tab"
    LONG_HESITATION = "long_hesitation"
    RAPID_COMPARISON = "rapid_comparison"


IMPLICIT_ACTION_EMOTIONS: dict[ImplicitAction, Emotion] = {
    ImplicitAction.PURCHASE: Emotion.HAPPY,
    ImplicitAction.ADD_TO_CART: Emotion.HAPPY,
    ImplicitAction.QUICK_EXIT: Emotion.DISGUSTED,
    ImplicitAction.CLOSE_TAB: Emotion.DISGUSTED,
    ImplicitAction.LONG_HESITATION: Emotion.ANXIOUS,
    ImplicitAction.RAPID_COMPARISON: Emotion.SURPRISED,
}


# ── Inference ─────────────────────────────────────────────────

class Prediction(BaseModel):
    """Classifier output for one feature vector."""

    emotion: Emotion
    confidence: int = Field(ge=0, le=100, description="round(max probability * 100)")
    probabilities: dict[str, float] = Field(default_factory=dict)
    fallback: bool = Field(
        False,
        description="True when the model could not run and a neutral default was served.",
    )

    def consumer_view(self) -> dict[str, Any]:
        """The only fields downstream UI collaborators may depend on."""
        return {"emotion": self.emotion.value, "confidence": self.confidence}


# ── Training data ─────────────────────────────────────────────

class TrainingSample(BaseModel):
    """A stored inference, optionally corrected by feedback."""

    id: int
    features: list[float]
    emotion: Emotion
    corrected_emotion: Emotion | None = None
    confidence: float = Field(ge=0, le=100)
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    feedback_type: FeedbackType | None = None

    @property
    def training_label(self) -> Emotion:
        """Label to train on: the human correction when there is one."""
        return self.corrected_emotion or self.emotion


class FeedbackRecord(BaseModel):
    """Append-only feedback log entry."""

    id: int
    sample_id: int
    feedback_type: FeedbackType
    corrected_emotion: Emotion | None = None
    timestamp: datetime


class StoreStatistics(BaseModel):
    """Aggregate view over the training store."""

    total_samples: int = 0
    total_feedback: int = 0
    emotion_counts: dict[str, int] = Field(default_factory=dict)
    feedback_counts: dict[str, int] = Field(default_factory=dict)
    avg_confidence: float = 0.0
    oldest_sample: datetime | None = None
    newest_sample: datetime | None = None


class TrainingStats(BaseModel):
    """Statistics published after each retraining run for monitoring."""

    total_samples: int = 0
    total_feedback: int = 0
    last_training_time: datetime | None = None
    avg_confidence: float = 0.0
    emotion_distribution: dict[str, int] = Field(default_factory=dict)
    last_training_sample_count: int = 0
    training_count: int = 0
