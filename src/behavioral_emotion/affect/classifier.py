"""Emotion classifier — online-learning wrapper around the fixed network.

:class:`EmotionClassifier` is the only owner of :class:`ModelState`.  Callers
get predictions and submit labelled samples; they never see the matrices.

Lifecycle
---------
1. :meth:`initialize` loads the persisted state.  An absent or unreadable
   blob is treated as "no model yet": weights are Xavier-initialised and
   pretrained on synthetic samples, then saved once.
2. :meth:`predict` is synchronous and never raises.  Before initialisation,
   or if the forward pass fails, it serves a neutral fallback.
3. :meth:`train` performs one gradient step and persists every
   ``persist_every`` steps.
"""

from __future__ import annotations

import random
from typing import Any, Sequence

import structlog
from pydantic import ValidationError

from behavioral_emotion.affect.network import (
    OUTPUT_SIZE,
    ModelState,
    backward,
    cross_entropy,
    forward,
    init_state,
)
from behavioral_emotion.affect.synthetic import generate_synthetic_samples
from behavioral_emotion.errors import ModelStateError
from behavioral_emotion.models import (
    EMOTIONS,
    Emotion,
    Prediction,
    coerce_features,
    parse_emotion,
    utc_now,
)
from behavioral_emotion.storage.repository import ModelStateRepository

logger = structlog.get_logger(__name__)


def neutral_prediction() -> Prediction:
    """Served whenever the model cannot produce a real answer."""
    uniform = 1.0 / OUTPUT_SIZE
    return Prediction(
        emotion=Emotion.NEUTRAL,
        confidence=round(uniform * 100),
        probabilities={e.value: uniform for e in EMOTIONS},
        fallback=True,
    )


class EmotionClassifier:
    """40 → 64 → 32 → 8 network trained one sample at a time.

    Parameters
    ----------
    repository : ModelStateRepository, optional
        Where the state blob is persisted.  ``None`` keeps the model in
        memory only.
    learning_rate : float
        Fixed gradient-descent step size.
    persist_every : int
        Save after every *n*-th training step.
    synthetic_samples : int
        Size of the bootstrap set used when no persisted model exists.
    seed : int, optional
        Seeds weight initialisation and synthetic data.
    """

    def __init__(
        self,
        repository: ModelStateRepository | None = None,
        *,
        learning_rate: float = 0.01,
        persist_every: int = 10,
        synthetic_samples: int = 100,
        seed: int | None = None,
    ) -> None:
        self._repository = repository
        self.learning_rate = learning_rate
        self.persist_every = max(1, persist_every)
        self.synthetic_samples = synthetic_samples
        self._rng = random.Random(seed)
        self._state: ModelState | None = None

    # ── Lifecycle ─────────────────────────────────────────────

    @property
    def is_ready(self) -> bool:
        return self._state is not None

    @property
    def training_count(self) -> int:
        return self._state.training_count if self._state else 0

    async def initialize(self) -> None:
        """Load the persisted model, or bootstrap a new one."""
        if await self._load():
            logger.info("classifier.loaded", training_count=self.training_count)
            return
        self._bootstrap()
        await self.save()
        logger.info("classifier.bootstrapped", training_count=self.training_count)

    async def _load(self) -> bool:
        if self._repository is None:
            return False
        try:
            blob = await self._repository.get()
            if blob is None:
                return False
            self.deserialize(blob)
        except Exception as exc:
            logger.warning("classifier.load_failed", error=str(exc))
            return False
        return True

    def _bootstrap(self) -> None:
        self._state = init_state(self._rng)
        for features, emotion in generate_synthetic_samples(self.synthetic_samples, self._rng):
            self._step(features, EMOTIONS.index(emotion))

    async def save(self) -> None:
        """Persist the current state; failures are logged, not raised."""
        if self._repository is None or self._state is None:
            return
        try:
            await self._repository.save(self.serialize())
        except Exception as exc:
            logger.error("classifier.save_failed", error=str(exc))
            return
        logger.debug("classifier.saved", training_count=self.training_count)

    async def reset(self) -> None:
        """Drop the persisted model and start over from a fresh bootstrap."""
        if self._repository is not None:
            try:
                await self._repository.delete()
            except Exception as exc:
                logger.error("classifier.delete_failed", error=str(exc))
        self._state = None
        self._bootstrap()
        await self.save()
        logger.warning("classifier.reset")

    # ── Inference ─────────────────────────────────────────────

    def predict(self, features: Sequence[Any] | None) -> Prediction:
        """Arg-max emotion with ``confidence = round(max(p) * 100)``."""
        if self._state is None or features is None:
            return neutral_prediction()
        try:
            probabilities = forward(self._state, coerce_features(features)).output
        except Exception as exc:
            logger.error("classifier.predict_failed", error=str(exc))
            return neutral_prediction()

        best = max(range(OUTPUT_SIZE), key=probabilities.__getitem__)
        return Prediction(
            emotion=EMOTIONS[best],
            confidence=round(probabilities[best] * 100),
            probabilities={e.value: p for e, p in zip(EMOTIONS, probabilities)},
        )

    def loss(self, features: Sequence[Any], label: Emotion | str) -> float:
        """Cross-entropy of the current model on one labelled sample."""
        emotion = parse_emotion(label)
        if self._state is None or emotion is None:
            raise ModelStateError("loss needs an initialised model and a valid label")
        output = forward(self._state, coerce_features(features)).output
        return cross_entropy(output, EMOTIONS.index(emotion))

    # ── Training ──────────────────────────────────────────────

    def _step(self, features: Sequence[Any], target: int) -> None:
        assert self._state is not None
        fp = forward(self._state, coerce_features(features))
        backward(self._state, fp, target, self.learning_rate)
        self._state.training_count += 1

    async def train(self, features: Sequence[Any], label: Emotion | str) -> bool:
        """One online gradient step.

        Returns ``False`` without touching any weight when *label* is not one
        of the eight emotions.
        """
        emotion = parse_emotion(label)
        if emotion is None:
            logger.warning("classifier.invalid_label", label=str(label))
            return False
        if self._state is None:
            await self.initialize()

        self._step(features, EMOTIONS.index(emotion))
        if self._state.training_count % self.persist_every == 0:
            await self.save()
        return True

    # ── Serialization ─────────────────────────────────────────

    def serialize(self) -> dict[str, Any]:
        """Opaque blob: weights, training count, version and timestamp."""
        if self._state is None:
            raise ModelStateError("Model is not initialised")
        self._state.timestamp = utc_now()
        return self._state.model_dump(mode="json")

    def deserialize(self, blob: dict[str, Any]) -> None:
        """Replace the current state; raises :class:`ModelStateError` on a bad blob."""
        try:
            state = ModelState.model_validate(blob)
        except ValidationError as exc:
            raise ModelStateError(f"Unreadable model state: {exc.error_count()} error(s)") from exc
        problems = state.check_shapes()
        if problems:
            raise ModelStateError("; ".join(problems))
        self._state = state
