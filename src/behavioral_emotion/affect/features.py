"""Feature engineering — reduce a window of raw events to a 40-value vector.

This module transforms a :class:`WindowSnapshot` into the fixed-length
feature vector consumed by the emotion classifier.

Feature groups
--------------
=============  =====  ====================================================
Group          Size   Signals
=============  =====  ====================================================
Keystroke      10     speed, rhythm, corrections, hold time, pauses, bursts
Pointer        12     velocity, acceleration, jitter, clicks, coverage
Scroll         6      speed, reversals, pauses, depth, consistency
Interaction    8      time on page, density, focus changes, idleness
Temporal       4      time of day, day of week, weekend, work hours
=============  =====  ====================================================

Every value is clamped to [-10, 10] and non-finite results become 0.  A
category with no events yields an all-zero sub-vector.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Sequence

from behavioral_emotion.collectors.events import EventCategory, RawEvent, WindowSnapshot
from behavioral_emotion.models import FEATURE_COUNT

# ── Constants ─────────────────────────────────────────────────

FEATURE_CLAMP = 10.0

_KEY_PAUSE_MS = 2000
_KEY_BURST_MS = 100
_POINTER_IDLE_MS = 1000
_CLICK_CLUSTER_PX = 50
_SCROLL_PAUSE_MS = 2000
_RAPID_SCROLL_PX_S = 1000
_IDLE_SECONDS = 5
_MIN_DT_SECONDS = 0.001

FEATURE_GROUPS: dict[str, slice] = {
    "keystroke": slice(0, 10),
    "pointer": slice(10, 22),
    "scroll": slice(22, 28),
    "interaction": slice(28, 36),
    "temporal": slice(36, 40),
}

FEATURE_NAMES: tuple[str, ...] = (
    # Keystroke (10)
    "typing_speed", "typing_rhythm_variance", "backspace_ratio", "avg_key_hold_duration",
    "pause_frequency", "burst_typing_score", "modifier_ratio", "avg_inter_key_interval",
    "typing_consistency", "error_correction_rate",
    # Pointer (12)
    "avg_pointer_velocity", "pointer_acceleration", "trajectory_jitter", "click_frequency",
    "avg_click_duration", "avg_hover_duration", "direction_change_ratio", "movement_coverage",
    "click_clustering", "movement_smoothness", "velocity_variance", "idle_time_ratio",
    # Scroll (6)
    "avg_scroll_speed", "scroll_direction_changes", "scroll_pause_frequency", "scroll_depth",
    "scroll_consistency", "rapid_scroll_ratio",
    # Interaction (8)
    "time_on_page", "interaction_density", "focus_change_frequency", "normalized_session_duration",
    "activity_ratio", "engagement_score", "idle_flag", "multitasking_indicator",
    # Temporal (4)
    "time_of_day", "day_of_week", "is_weekend", "is_work_hours",
)


# ── Statistics helpers ───────────────────────────────────────


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _variance(values: Sequence[float]) -> float:
    """Population variance; 0 for an empty sequence."""
    if not values:
        return 0.0
    m = _mean(values)
    return sum((v - m) ** 2 for v in values) / len(values)


def _consistency(intervals: Sequence[float]) -> float:
    """``1 / (coefficient of variation + 1)``; 0 when undefined."""
    if not intervals:
        return 0.0
    m = _mean(intervals)
    if m <= 0:
        return 0.0
    return 1.0 / (math.sqrt(_variance(intervals)) / m + 1.0)


def _diffs(timestamps: Sequence[float]) -> list[float]:
    return [timestamps[i] - timestamps[i - 1] for i in range(1, len(timestamps))]


def _sign_flip(a: float, b: float) -> bool:
    return a * b < 0


# ── Group extractors ─────────────────────────────────────────


def keystroke_features(keystrokes: Sequence[RawEvent], session_duration_ms: float) -> list[float]:
    """Typing dynamics from the window's keydown events."""
    if not keystrokes:
        return [0.0] * 10

    session_s = max(session_duration_ms / 1000.0, 1.0)
    count = len(keystrokes)
    intervals = _diffs([k.timestamp for k in keystrokes])

    typing_speed = count / session_s
    rhythm_variance = _variance(intervals) / 1000.0
    backspaces = sum(1 for k in keystrokes if k.is_backspace)
    backspace_ratio = backspaces / count
    holds = [k.hold_duration for k in keystrokes if k.hold_duration]
    avg_hold_s = _mean(holds) / 1000.0
    pauses = sum(1 for i in intervals if i > _KEY_PAUSE_MS)
    pause_frequency = pauses / max(session_s / 60.0, 1.0)
    bursts = sum(1 for i in intervals if i < _KEY_BURST_MS)
    burst_score = bursts / count
    modifier_ratio = sum(1 for k in keystrokes if k.is_modifier) / count
    avg_interval_s = _mean(intervals) / 1000.0
    consistency = _consistency(intervals)
    error_correction = backspaces / (count + backspaces)

    return [
        typing_speed,
        rhythm_variance,
        backspace_ratio,
        avg_hold_s,
        pause_frequency,
        burst_score,
        modifier_ratio,
        avg_interval_s,
        consistency,
        error_correction,
    ]


def pointer_features(
    moves: Sequence[RawEvent],
    clicks: Sequence[RawEvent],
    presses: Sequence[RawEvent] = (),
    *,
    viewport_width: float = 1920.0,
    viewport_height: float = 1080.0,
) -> list[float]:
    """Pointer kinematics and click behaviour."""
    if not moves and not clicks:
        return [0.0] * 12

    velocities: list[float] = []
    for prev, cur in zip(moves, moves[1:]):
        dt = (cur.timestamp - prev.timestamp) / 1000.0
        distance = math.hypot(cur.x - prev.x, cur.y - prev.y)
        velocities.append(distance / max(dt, _MIN_DT_SECONDS))
    avg_velocity = _mean(velocities)
    acceleration = _mean([abs(b - a) for a, b in zip(velocities, velocities[1:])])

    angles: list[float] = []
    direction_changes = 0
    for p0, p1, p2 in zip(moves, moves[1:], moves[2:]):
        dx1, dy1 = p1.x - p0.x, p1.y - p0.y
        dx2, dy2 = p2.x - p1.x, p2.y - p1.y
        angles.append(abs(math.atan2(dy2, dx2) - math.atan2(dy1, dx1)))
        if _sign_flip(dx1, dx2) or _sign_flip(dy1, dy2):
            direction_changes += 1
    jitter = _mean(angles)

    span_min = (moves[-1].timestamp - moves[0].timestamp) / 60000.0 if moves else 1.0
    click_frequency = len(clicks) / max(span_min, 1.0)

    click_durations = [p.duration for p in presses if p.duration]
    avg_click_s = _mean(click_durations) / 1000.0

    gaps = _diffs([m.timestamp for m in moves])
    avg_hover_s = _mean(gaps) / 1000.0
    direction_ratio = direction_changes / max(len(moves), 1)

    coverage = 0.0
    if moves:
        xs = [m.x for m in moves]
        ys = [m.y for m in moves]
        area = max(viewport_width * viewport_height, 1.0)
        coverage = (max(xs) - min(xs)) * (max(ys) - min(ys)) / area

    clustered = sum(
        1 for a, b in zip(clicks, clicks[1:])
        if math.hypot(b.x - a.x, b.y - a.y) < _CLICK_CLUSTER_PX
    )
    click_clustering = clustered / max(len(clicks), 1)

    smoothness = 1.0 / (jitter + 1.0)
    velocity_variance = _variance(velocities) / 1e6
    idle_ratio = sum(1 for g in gaps if g > _POINTER_IDLE_MS) / max(len(gaps), 1)

    return [
        avg_velocity / 1000.0,
        acceleration / 1000.0,
        jitter,
        click_frequency,
        avg_click_s,
        avg_hover_s,
        direction_ratio,
        coverage,
        click_clustering,
        smoothness,
        velocity_variance,
        idle_ratio,
    ]


def scroll_features(scrolls: Sequence[RawEvent], document_height: float = 1080.0) -> list[float]:
    """Scrolling speed, rhythm and depth."""
    if not scrolls:
        return [0.0] * 6

    speeds: list[float] = []
    for prev, cur in zip(scrolls, scrolls[1:]):
        dt = (cur.timestamp - prev.timestamp) / 1000.0
        speeds.append(abs(cur.scroll_y - prev.scroll_y) / max(dt, _MIN_DT_SECONDS))

    reversals = sum(
        1 for s0, s1, s2 in zip(scrolls, scrolls[1:], scrolls[2:])
        if _sign_flip(s1.scroll_y - s0.scroll_y, s2.scroll_y - s1.scroll_y)
    )
    intervals = _diffs([s.timestamp for s in scrolls])
    pauses = sum(1 for i in intervals if i > _SCROLL_PAUSE_MS)
    depth = max(s.scroll_y for s in scrolls) / max(document_height, 1.0)
    rapid = sum(1 for s in speeds if s > _RAPID_SCROLL_PX_S) / max(len(speeds), 1)

    return [
        _mean(speeds) / 1000.0,
        reversals / len(scrolls),
        pauses / len(scrolls),
        depth,
        _consistency(intervals),
        rapid,
    ]


def interaction_features(snapshot: WindowSnapshot) -> list[float]:
    """Page-level engagement over the whole session."""
    session_s = snapshot.session_duration_ms / 1000.0
    idle_s = snapshot.time_since_last_activity_ms / 1000.0
    session_min = max(session_s / 60.0, 1.0)

    focus_changes = sum(1 for e in snapshot.focus_events if e.category is EventCategory.FOCUS)
    activity_ratio = max(0.0, 1.0 - idle_s / session_s) if session_s > 0 else 0.0
    engagement = min(
        (2 * len(snapshot.clicks) + len(snapshot.keystrokes) + len(snapshot.scrolls)) / 100.0,
        1.0,
    )

    return [
        min(session_s / 600.0, 1.0),
        snapshot.event_count / session_min / 100.0,
        focus_changes / session_min,
        min(session_s / 600.0, 1.0),
        activity_ratio,
        engagement,
        1.0 if idle_s > _IDLE_SECONDS else 0.0,
        focus_changes / session_min,
    ]


def temporal_features(moment: datetime) -> list[float]:
    """Calendar context; the week starts on Sunday (index 0)."""
    day = moment.isoweekday() % 7
    return [
        (moment.hour * 60 + moment.minute) / 1440.0,
        day / 7.0,
        1.0 if day in (0, 6) else 0.0,
        1.0 if 9 <= moment.hour < 17 else 0.0,
    ]


# ── Normalisation & entry point ──────────────────────────────


def normalize_features(values: Sequence[float]) -> list[float]:
    """Clamp every value to [-10, 10]; non-finite values become 0."""
    out: list[float] = []
    for v in values:
        try:
            f = float(v)
        except (TypeError, ValueError):
            f = 0.0
        if not math.isfinite(f):
            f = 0.0
        out.append(max(-FEATURE_CLAMP, min(FEATURE_CLAMP, f)))
    return out


def extract_features(snapshot: WindowSnapshot | None) -> list[float] | None:
    """Build the 40-value feature vector for one window.

    Returns ``None`` when *snapshot* is ``None``.
    """
    if snapshot is None:
        return None

    features: list[float] = []
    features += keystroke_features(snapshot.keystrokes, snapshot.session_duration_ms)
    features += pointer_features(
        snapshot.pointer_moves,
        snapshot.clicks,
        snapshot.presses,
        viewport_width=snapshot.viewport_width,
        viewport_height=snapshot.viewport_height,
    )
    features += scroll_features(snapshot.scrolls, snapshot.document_height)
    features += interaction_features(snapshot)
    features += temporal_features(snapshot.captured_at)
    return normalize_features(features)


def describe(features: Sequence[float]) -> dict[str, float]:
    """Map a feature vector onto :data:`FEATURE_NAMES`."""
    return dict(zip(FEATURE_NAMES, features))
