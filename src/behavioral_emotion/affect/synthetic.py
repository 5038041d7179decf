"""Synthetic bootstrap data for a freshly initialised classifier.

Each emotion sets a handful of characteristic feature dimensions to a
hand-tuned range; every other dimension gets low-amplitude noise in
``[0, 0.3)``.  The dimension choices are a heuristic and can be replaced
freely.
"""

from __future__ import annotations

import random

from behavioral_emotion.affect.features import FEATURE_COUNT, FEATURE_NAMES
from behavioral_emotion.models import EMOTIONS, Emotion

NOISE_CEILING = 0.3

_IDX = {name: i for i, name in enumerate(FEATURE_NAMES)}

# emotion → {feature name: (low, width)}; value = low + U[0, width)
PATTERNS: dict[Emotion, dict[str, tuple[float, float]]] = {
    Emotion.HAPPY: {
        "typing_speed": (0.7, 0.3),
        "avg_pointer_velocity": (0.8, 0.2),
        "avg_scroll_speed": (0.6, 0.3),
        "time_on_page": (0.7, 0.3),
    },
    Emotion.SAD: {
        "typing_speed": (0.2, 0.2),
        "avg_pointer_velocity": (0.3, 0.2),
        "avg_scroll_speed": (0.2, 0.2),
        "time_on_page": (0.2, 0.2),
    },
    Emotion.ANGRY: {
        "typing_speed": (0.8, 0.2),
        "backspace_ratio": (0.3, 0.3),
        "avg_pointer_velocity": (0.9, 0.1),
        "click_frequency": (0.7, 0.3),
    },
    Emotion.ANXIOUS: {
        "typing_rhythm_variance": (0.6, 0.4),
        "pointer_acceleration": (0.7, 0.3),
        "click_frequency": (0.8, 0.2),
        "scroll_direction_changes": (0.6, 0.3),
    },
    Emotion.NEUTRAL: {
        "typing_speed": (0.4, 0.2),
        "avg_pointer_velocity": (0.5, 0.2),
        "avg_scroll_speed": (0.4, 0.2),
        "time_on_page": (0.5, 0.2),
    },
    Emotion.SURPRISED: {
        "pause_frequency": (0.6, 0.3),
        "click_frequency": (0.3, 0.2),
        "avg_scroll_speed": (0.7, 0.3),
        "interaction_density": (0.7, 0.3),
    },
    Emotion.FEARFUL: {
        "typing_rhythm_variance": (0.7, 0.3),
        "pointer_acceleration": (0.8, 0.2),
        "trajectory_jitter": (0.7, 0.3),
        "scroll_direction_changes": (0.8, 0.2),
    },
    Emotion.DISGUSTED: {
        "typing_speed": (0.3, 0.2),
        "avg_pointer_velocity": (0.4, 0.2),
        "click_frequency": (0.2, 0.2),
        "time_on_page": (0.3, 0.2),
    },
}


def synthetic_features(emotion: Emotion, rng: random.Random) -> list[float]:
    """One feature vector following *emotion*'s pattern."""
    features = [rng.random() * NOISE_CEILING for _ in range(FEATURE_COUNT)]
    for name, (low, width) in PATTERNS[emotion].items():
        features[_IDX[name]] = low + rng.random() * width
    return features


def generate_synthetic_samples(
    count: int, rng: random.Random | None = None
) -> list[tuple[list[float], Emotion]]:
    """*count* ``(features, emotion)`` pairs with uniformly drawn labels."""
    rng = rng or random.Random()
    samples = []
    for _ in range(count):
        emotion = rng.choice(EMOTIONS)
        samples.append((synthetic_features(emotion, rng), emotion))
    return samples
