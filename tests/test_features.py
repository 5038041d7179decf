"""Tests for feature extraction."""

from __future__ import annotations

import math
from datetime import datetime

import pytest

from behavioral_emotion.affect.features import (
    FEATURE_COUNT,
    FEATURE_GROUPS,
    FEATURE_NAMES,
    describe,
    extract_features,
    keystroke_features,
    normalize_features,
    pointer_features,
    scroll_features,
    temporal_features,
)
from behavioral_emotion.collectors.events import EventCategory, RawEvent, WindowSnapshot


WEDNESDAY_MORNING = datetime(2025, 3, 12, 10, 30)
SUNDAY_EVENING = datetime(2025, 3, 16, 20, 0)


def _key(ts: float, key: str = "a", **kw) -> RawEvent:
    return RawEvent(EventCategory.KEYDOWN, ts, key=key, code=key, is_backspace=key == "Backspace", **kw)


def _move(ts: float, x: float, y: float) -> RawEvent:
    return RawEvent(EventCategory.POINTER_MOVE, ts, x=x, y=y)


def _click(ts: float, x: float, y: float) -> RawEvent:
    return RawEvent(EventCategory.CLICK, ts, x=x, y=y)


def _scroll(ts: float, y: float) -> RawEvent:
    return RawEvent(EventCategory.SCROLL, ts, scroll_y=y)


# ── Shape & bounds ────────────────────────────────────────────


class TestShape:
    def test_none_in_none_out(self):
        assert extract_features(None) is None

    def test_names_and_groups_cover_the_vector(self):
        assert len(FEATURE_NAMES) == FEATURE_COUNT == 40
        sizes = {name: s.stop - s.start for name, s in FEATURE_GROUPS.items()}
        assert sizes == {"keystroke": 10, "pointer": 12, "scroll": 6, "interaction": 8, "temporal": 4}

    def test_empty_session_is_near_zero(self):
        snapshot = WindowSnapshot.empty(captured_at=WEDNESDAY_MORNING)
        features = extract_features(snapshot)
        assert len(features) == 40
        assert all(abs(v) <= 1.0 for v in features)
        for group in ("keystroke", "pointer", "scroll"):
            assert not any(features[FEATURE_GROUPS[group]])

    def test_extreme_inputs_stay_bounded_and_finite(self):
        moves = [_move(i, x=(i % 2) * 1e12, y=(i % 3) * 1e12) for i in range(30)]
        snapshot = WindowSnapshot(
            keystrokes=[_key(i * 0.5) for i in range(500)],
            pointer_moves=moves,
            clicks=[_click(i, 1e9, -1e9) for i in range(200)],
            scrolls=[_scroll(i, (-1) ** i * 1e15) for i in range(50)],
            session_duration_ms=1.0,
            time_since_last_activity_ms=1e18,
            viewport_width=1.0,
            viewport_height=1.0,
            document_height=1.0,
            captured_at=SUNDAY_EVENING,
        )
        features = extract_features(snapshot)
        assert len(features) == 40
        assert all(math.isfinite(v) and -10.0 <= v <= 10.0 for v in features)

    def test_normalize_replaces_non_finite(self):
        assert normalize_features([float("nan"), float("inf"), -float("inf"), 25, -25, "x", 0.5]) == [
            0.0, 0.0, 0.0, 10.0, -10.0, 0.0, 0.5,
        ]


# ── Keystroke ─────────────────────────────────────────────────


class TestKeystroke:
    @pytest.mark.asyncio
    async def test_fast_typing_beats_slow_typing(self, make_collector):
        async def typing_speed(spacing_ms: float) -> float:
            collector, clock = make_collector()
            await collector.start(lambda snapshot: None)
            for i in range(1, 51):
                collector.record("keydown", i * spacing_ms, key="a")
            snapshot = collector.current_window(clock.advance(50 * spacing_ms))
            await collector.stop()
            return extract_features(snapshot)[FEATURE_NAMES.index("typing_speed")]

        assert await typing_speed(20) > await typing_speed(200)

    def test_ratios(self):
        keys = [_key(0), _key(150), _key(300, "Backspace"), _key(450, "Shift", is_modifier=True)]
        f = dict(zip(FEATURE_NAMES[:10], keystroke_features(keys, 2000)))
        assert f["typing_speed"] == pytest.approx(2.0)
        assert f["backspace_ratio"] == pytest.approx(0.25)
        assert f["modifier_ratio"] == pytest.approx(0.25)
        assert f["error_correction_rate"] == pytest.approx(1 / 5)
        assert f["avg_inter_key_interval"] == pytest.approx(0.15)
        assert f["typing_consistency"] == pytest.approx(1.0)
        assert f["burst_typing_score"] == 0.0

    def test_hold_pauses_and_bursts(self):
        keys = [
            _key(0, hold_duration=100),
            _key(50, hold_duration=300),
            _key(3000),
        ]
        f = dict(zip(FEATURE_NAMES[:10], keystroke_features(keys, 60000)))
        assert f["avg_key_hold_duration"] == pytest.approx(0.2)
        assert f["pause_frequency"] == pytest.approx(1.0)
        assert f["burst_typing_score"] == pytest.approx(1 / 3)


# ── Pointer ───────────────────────────────────────────────────


class TestPointer:
    def test_empty_is_zero(self):
        assert pointer_features([], []) == [0.0] * 12

    def test_velocity_and_coverage(self):
        moves = [_move(0, 0, 0), _move(1000, 300, 400), _move(2000, 600, 800)]
        f = dict(zip(FEATURE_NAMES[10:22], pointer_features(moves, [], viewport_width=1000, viewport_height=1000)))
        assert f["avg_pointer_velocity"] == pytest.approx(0.5)  # 500 px/s ÷ 1000
        assert f["pointer_acceleration"] == pytest.approx(0.0)
        assert f["trajectory_jitter"] == pytest.approx(0.0)
        assert f["movement_smoothness"] == pytest.approx(1.0)
        assert f["movement_coverage"] == pytest.approx(0.48)
        assert f["avg_hover_duration"] == pytest.approx(1.0)

    def test_direction_change_on_either_axis(self):
        moves = [_move(0, 0, 0), _move(10, 10, 10), _move(20, 0, 20)]
        f = dict(zip(FEATURE_NAMES[10:22], pointer_features(moves, [])))
        assert f["direction_change_ratio"] == pytest.approx(1 / 3)

    def test_clicks_clustering_and_press_duration(self):
        clicks = [_click(0, 10, 10), _click(100, 20, 20), _click(200, 500, 500)]
        presses = [RawEvent(EventCategory.POINTER_DOWN, 0, duration=100), RawEvent(EventCategory.POINTER_DOWN, 100)]
        f = dict(zip(FEATURE_NAMES[10:22], pointer_features([], clicks, presses)))
        assert f["click_frequency"] == pytest.approx(3.0)
        assert f["click_clustering"] == pytest.approx(1 / 3)
        assert f["avg_click_duration"] == pytest.approx(0.1)

    def test_idle_ratio(self):
        moves = [_move(0, 0, 0), _move(2000, 1, 1), _move(2100, 2, 2)]
        f = dict(zip(FEATURE_NAMES[10:22], pointer_features(moves, [])))
        assert f["idle_time_ratio"] == pytest.approx(0.5)


# ── Scroll ────────────────────────────────────────────────────


class TestScroll:
    def test_depth_reversals_and_rapid(self):
        scrolls = [_scroll(0, 0), _scroll(100, 500), _scroll(200, 200), _scroll(2500, 250)]
        f = dict(zip(FEATURE_NAMES[22:28], scroll_features(scrolls, document_height=1000)))
        assert f["scroll_depth"] == pytest.approx(0.5)
        assert f["scroll_direction_changes"] == pytest.approx(2 / 4)
        assert f["scroll_pause_frequency"] == pytest.approx(1 / 4)
        assert f["rapid_scroll_ratio"] == pytest.approx(2 / 3)

    def test_empty_is_zero(self):
        assert scroll_features([]) == [0.0] * 6


# ── Interaction & temporal ────────────────────────────────────


class TestInteraction:
    def test_idle_flag_and_activity_ratio(self):
        snapshot = WindowSnapshot(
            keystrokes=[_key(0)],
            session_duration_ms=60000,
            time_since_last_activity_ms=6000,
            captured_at=WEDNESDAY_MORNING,
        )
        f = describe(extract_features(snapshot))
        assert f["idle_flag"] == 1.0
        assert f["activity_ratio"] == pytest.approx(0.9)
        assert f["time_on_page"] == pytest.approx(0.1)
        assert f["engagement_score"] == pytest.approx(0.01)

    def test_focus_changes_per_minute(self):
        focus = [RawEvent(EventCategory.FOCUS, 0), RawEvent(EventCategory.BLUR, 10), RawEvent(EventCategory.FOCUS, 20)]
        snapshot = WindowSnapshot(
            clicks=[_click(0, 0, 0)],
            focus_events=focus,
            session_duration_ms=120000,
            captured_at=WEDNESDAY_MORNING,
        )
        f = describe(extract_features(snapshot))
        assert f["focus_change_frequency"] == pytest.approx(1.0)
        assert f["multitasking_indicator"] == pytest.approx(1.0)

    def test_zero_session_has_zero_activity_ratio(self):
        snapshot = WindowSnapshot(keystrokes=[_key(0)], captured_at=WEDNESDAY_MORNING)
        assert describe(extract_features(snapshot))["activity_ratio"] == 0.0


class TestTemporal:
    def test_weekday_work_hours(self):
        time_of_day, day, weekend, work = temporal_features(WEDNESDAY_MORNING)
        assert time_of_day == pytest.approx(630 / 1440)
        assert day == pytest.approx(3 / 7)
        assert weekend == 0.0
        assert work == 1.0

    def test_sunday_is_day_zero(self):
        _, day, weekend, work = temporal_features(SUNDAY_EVENING)
        assert day == 0.0
        assert weekend == 1.0
        assert work == 0.0
