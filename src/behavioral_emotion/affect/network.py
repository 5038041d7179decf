"""Fixed-topology feed-forward network: 40 → 64 (ReLU) → 32 (ReLU) → 8 (softmax).

Weights live in plain row-major 2-D lists, one per layer, so the numeric
core stays auditable and free of tensor libraries.  ``W[i][j]`` connects
input unit *i* to output unit *j*.

Training is single-sample gradient descent with the softmax/cross-entropy
output gradient ``p - y`` and a ReLU mask of ``activation > 0``.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from pydantic import BaseModel, Field

from behavioral_emotion.models import FEATURE_COUNT, utc_now

INPUT_SIZE = FEATURE_COUNT
HIDDEN1_SIZE = 64
HIDDEN2_SIZE = 32
OUTPUT_SIZE = 8
STATE_VERSION = 1

Matrix = list[list[float]]
Vector = list[float]

# (weight name, bias name, fan in, fan out)
LAYERS: tuple[tuple[str, str, int, int], ...] = (
    ("W1", "b1", INPUT_SIZE, HIDDEN1_SIZE),
    ("W2", "b2", HIDDEN1_SIZE, HIDDEN2_SIZE),
    ("W3", "b3", HIDDEN2_SIZE, OUTPUT_SIZE),
)


class ModelState(BaseModel):
    """Every mutable number of the classifier, plus bookkeeping."""

    W1: Matrix
    b1: Vector
    W2: Matrix
    b2: Vector
    W3: Matrix
    b3: Vector
    training_count: int = 0
    version: int = STATE_VERSION
    timestamp: datetime = Field(default_factory=utc_now)

    def check_shapes(self) -> list[str]:
        """Return a list of shape problems (empty when the state is usable)."""
        problems: list[str] = []
        for w_name, b_name, rows, cols in LAYERS:
            weights = getattr(self, w_name)
            bias = getattr(self, b_name)
            if len(weights) != rows or any(len(row) != cols for row in weights):
                problems.append(f"{w_name} must be {rows}x{cols}")
            if len(bias) != cols:
                problems.append(f"{b_name} must have {cols} entries")
            values = [v for row in weights for v in row] + list(bias)
            if not all(math.isfinite(v) for v in values):
                problems.append(f"{w_name}/{b_name} contain non-finite values")
        return problems


@dataclass
class ForwardPass:
    """Activations kept from a forward pass for backpropagation."""

    x: Vector
    a1: Vector
    a2: Vector
    output: Vector


# ── Initialisation ────────────────────────────────────────────


def zeros(size: int) -> Vector:
    return [0.0] * size


def xavier_matrix(rows: int, cols: int, rng: random.Random) -> Matrix:
    """Uniform in ``±sqrt(6 / fan_in)`` with ``fan_in = rows``."""
    limit = math.sqrt(6.0 / rows)
    return [[rng.uniform(-limit, limit) for _ in range(cols)] for _ in range(rows)]


def init_state(rng: random.Random | None = None) -> ModelState:
    """Fresh Xavier-initialised weights with zero biases."""
    rng = rng or random.Random()
    params: dict[str, list] = {}
    for w_name, b_name, rows, cols in LAYERS:
        params[w_name] = xavier_matrix(rows, cols, rng)
        params[b_name] = zeros(cols)
    return ModelState(**params)


# ── Primitives ────────────────────────────────────────────────


def dense(x: Sequence[float], weights: Matrix, bias: Vector) -> Vector:
    out = list(bias)
    for i, xi in enumerate(x):
        if xi == 0.0:
            continue
        row = weights[i]
        for j in range(len(out)):
            out[j] += xi * row[j]
    return out


def relu(z: Vector) -> Vector:
    return [v if v > 0.0 else 0.0 for v in z]


def softmax(z: Vector) -> Vector:
    peak = max(z)
    exps = [math.exp(v - peak) for v in z]
    total = sum(exps)
    return [e / total for e in exps]


def cross_entropy(probabilities: Sequence[float], index: int) -> float:
    return -math.log(max(probabilities[index], 1e-12))


# ── Propagation ───────────────────────────────────────────────


def forward(state: ModelState, x: Sequence[float]) -> ForwardPass:
    x = list(x)
    a1 = relu(dense(x, state.W1, state.b1))
    a2 = relu(dense(a1, state.W2, state.b2))
    output = softmax(dense(a2, state.W3, state.b3))
    return ForwardPass(x=x, a1=a1, a2=a2, output=output)


def _back_through(delta: Vector, weights: Matrix, activation: Vector) -> Vector:
    """Propagate *delta* through *weights* and apply the ReLU mask."""
    grad: Vector = []
    for i, row in enumerate(weights):
        if activation[i] > 0.0:
            grad.append(sum(d * w for d, w in zip(delta, row)))
        else:
            grad.append(0.0)
    return grad


def _descend(weights: Matrix, bias: Vector, inputs: Vector, delta: Vector, lr: float) -> None:
    for i, xi in enumerate(inputs):
        if xi == 0.0:
            continue
        row = weights[i]
        step = lr * xi
        for j, d in enumerate(delta):
            row[j] -= step * d
    for j, d in enumerate(delta):
        bias[j] -= lr * d


def backward(state: ModelState, fp: ForwardPass, target: int, learning_rate: float) -> None:
    """One gradient-descent step on *state*, in place.

    All layer gradients are computed from the pre-update weights before any
    weight is changed.
    """
    dz3 = list(fp.output)
    dz3[target] -= 1.0
    dz2 = _back_through(dz3, state.W3, fp.a2)
    dz1 = _back_through(dz2, state.W2, fp.a1)

    _descend(state.W3, state.b3, fp.a2, dz3, learning_rate)
    _descend(state.W2, state.b2, fp.a1, dz2, learning_rate)
    _descend(state.W1, state.b1, fp.x, dz1, learning_rate)
