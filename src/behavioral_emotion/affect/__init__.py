"""Affect inference — emotion classification from interaction telemetry.

This package turns windows of keyboard, pointer, scroll and focus events
into one of eight discrete emotions and keeps learning from feedback.

Architecture
------------
1. **Feature engineering** (`features.py`)
   - 40 bounded values in five groups (keystroke, pointer, scroll,
     interaction, temporal)
   - Missing event categories degrade to zeroed sub-vectors

2. **Network** (`network.py`, `synthetic.py`)
   - Fixed 40 → 64 → 32 → 8 feed-forward topology on plain lists
   - Xavier initialisation and a synthetic bootstrap set

3. **Classifier** (`classifier.py`)
   - Online single-sample gradient descent with periodic persistence
   - Neutral fallback whenever the model cannot answer

4. **Pipeline** (`pipeline.py`)
   - Collector callback that predicts and stores every window

Confidence & limitations
------------------------
Predictions are behavioural estimates, never diagnoses.  Until enough
feedback has been collected the model mostly reflects its synthetic
bootstrap.
"""

from behavioral_emotion.affect.classifier import EmotionClassifier, neutral_prediction
from behavioral_emotion.affect.features import (
    FEATURE_COUNT,
    FEATURE_GROUPS,
    FEATURE_NAMES,
    extract_features,
)
from behavioral_emotion.affect.network import ModelState
from behavioral_emotion.affect.pipeline import EmotionPipeline, InferenceResult

__all__ = [
    "EmotionClassifier",
    "EmotionPipeline",
    "FEATURE_COUNT",
    "FEATURE_GROUPS",
    "FEATURE_NAMES",
    "InferenceResult",
    "ModelState",
    "extract_features",
    "neutral_prediction",
]
