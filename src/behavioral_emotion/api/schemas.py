"""Request / response models shared across API route modules."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from behavioral_emotion.collectors.events import EventCategory
from behavioral_emotion.models import Emotion, FeedbackType, ImplicitAction


class EventPayload(BaseModel):
    """One host event.  Fields irrelevant to the category are ignored."""

    category: EventCategory
    timestamp: float | None = None  # host clock, ms
    key: str | None = None
    code: str | None = None
    is_backspace: bool | None = None
    is_modifier: bool = False
    x: float | None = None
    y: float | None = None
    button: int | None = None
    scroll_x: float | None = None
    scroll_y: float | None = None
    element: str | None = None


class ViewportUpdate(BaseModel):
    width: float | None = None
    height: float | None = None
    document_height: float | None = None


class EventBatch(BaseModel):
    """A batch of events from one host flush.

    Timestamps are only compared with each other: the batch is shifted so
    that its latest event lands on the server clock's "now".
    """

    events: list[EventPayload] = Field(default_factory=list)
    viewport: ViewportUpdate | None = None


class PredictRequest(BaseModel):
    features: list[float]
    context: dict[str, Any] = Field(default_factory=dict)
    store: bool = True


class FeedbackRequest(BaseModel):
    feedback_type: FeedbackType
    corrected_emotion: Emotion | None = None


class ImplicitFeedbackRequest(BaseModel):
    """Train immediately from a browsing action.

    Without ``features`` the latest served feature vector is used.
    """

    action: ImplicitAction
    features: list[float] | None = None


class EmotionResponse(BaseModel):
    """The consumer-facing view of a prediction."""

    emotion: Emotion
    confidence: int
