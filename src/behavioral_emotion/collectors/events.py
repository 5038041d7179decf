"""Event collector — buffers host interaction events into rolling windows.

The host (browser bridge, desktop hook, HTTP ingest route, ...) pushes
:class:`RawEvent` objects into :meth:`EventCollector.handle_event`.  Events
are appended to per-category ring buffers that are trimmed to twice the
window length.  A background asyncio task ticks once per second and, every
time a full window has elapsed, hands a copied :class:`WindowSnapshot` to the
registered callback.

Correlated start/end pairs (keydown/keyup, pointer_down/pointer_up) are
matched by identity (key ``code`` / pointer ``button``) through a small
lookup table; an unmatched start never acquires a duration.
"""

from __future__ import annotations

import asyncio
import inspect
import math
import time
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class EventCategory(str, Enum):
    """Raw input event categories delivered by the host."""

    KEYDOWN = "keydown"
    KEYUP = "keyup"
    POINTER_MOVE = "pointer_move"
    CLICK = "click"
    POINTER_DOWN = "pointer_down"
    POINTER_UP = "pointer_up"
    SCROLL = "scroll"
    FOCUS = "focus"
    BLUR = "blur"


# Category → buffer name.  keyup / pointer_up only complete a pending start.
_BUFFER_FOR: dict[EventCategory, str] = {
    EventCategory.KEYDOWN: "keystrokes",
    EventCategory.POINTER_MOVE: "pointer_moves",
    EventCategory.CLICK: "clicks",
    EventCategory.POINTER_DOWN: "presses",
    EventCategory.SCROLL: "scrolls",
    EventCategory.FOCUS: "focus_events",
    EventCategory.BLUR: "focus_events",
}

_BUFFERS = ("keystrokes", "pointer_moves", "clicks", "presses", "scrolls", "focus_events")


def _finite(value: Any, default: float = 0.0) -> float:
    """Coerce *value* to a finite float, falling back to *default*."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class RawEvent:
    """A single timestamped interaction event.

    Only the payload fields relevant to the category are meaningful.
    ``hold_duration`` (keydown) and ``duration`` (pointer_down) are filled
    in by the collector once the matching end event arrives.
    """

    category: EventCategory
    timestamp: float  # monotonic milliseconds
    key: str = ""
    code: str = ""
    is_backspace: bool = False
    is_modifier: bool = False
    hold_duration: float | None = None
    x: float = 0.0
    y: float = 0.0
    button: int = 0
    duration: float | None = None
    scroll_x: float = 0.0
    scroll_y: float = 0.0
    element: str = ""

    @classmethod
    def from_payload(
        cls,
        category: EventCategory | str,
        timestamp: Any = None,
        **payload: Any,
    ) -> RawEvent:
        """Build an event from loosely-typed host data.

        Non-finite or missing numeric fields become 0; a missing timestamp
        becomes ``nan`` and is replaced by the collector clock on ingest.
        """
        category = EventCategory(category)
        key = str(payload.get("key") or "")
        code = str(payload.get("code") or key)
        return cls(
            category=category,
            timestamp=_finite(timestamp, default=math.nan),
            key=key,
            code=code,
            is_backspace=bool(payload.get("is_backspace", key == "Backspace")),
            is_modifier=bool(payload.get("is_modifier", False)),
            x=_finite(payload.get("x")),
            y=_finite(payload.get("y")),
            button=int(_finite(payload.get("button"))),
            scroll_x=_finite(payload.get("scroll_x")),
            scroll_y=_finite(payload.get("scroll_y")),
            element=str(payload.get("element") or ""),
        )


@dataclass
class WindowSnapshot:
    """Copied view of one window of buffered events, handed to extraction."""

    keystrokes: list[RawEvent] = field(default_factory=list)
    pointer_moves: list[RawEvent] = field(default_factory=list)
    clicks: list[RawEvent] = field(default_factory=list)
    presses: list[RawEvent] = field(default_factory=list)
    scrolls: list[RawEvent] = field(default_factory=list)
    focus_events: list[RawEvent] = field(default_factory=list)
    session_duration_ms: float = 0.0
    time_since_last_activity_ms: float = 0.0
    timestamp: float = 0.0
    captured_at: datetime = field(default_factory=datetime.now)
    viewport_width: float = 1920.0
    viewport_height: float = 1080.0
    document_height: float = 1080.0

    @classmethod
    def empty(cls, **overrides: Any) -> WindowSnapshot:
        """A snapshot with no events at all."""
        return cls(**overrides)

    @property
    def has_activity(self) -> bool:
        return bool(self.keystrokes or self.pointer_moves or self.clicks)

    @property
    def event_count(self) -> int:
        return (
            len(self.keystrokes) + len(self.pointer_moves)
            + len(self.clicks) + len(self.scrolls)
        )


WindowCallback = Callable[[WindowSnapshot], Awaitable[None] | None]


class EventCollector:
    """Per-category rolling buffers plus a once-per-second window scheduler.

    Parameters
    ----------
    window_ms : int
        Window length in milliseconds (default 5000).  Buffers keep twice
        this horizon so a window boundary never loses events.
    tick_seconds : float
        Period of the background scheduling tick.
    clock : callable, optional
        Monotonic clock in milliseconds.  Injected by tests.
    wall_clock : callable, optional
        Wall-clock source for the snapshot's ``captured_at`` field.
    """

    def __init__(
        self,
        window_ms: int = 5000,
        tick_seconds: float = 1.0,
        *,
        clock: Callable[[], float] | None = None,
        wall_clock: Callable[[], datetime] | None = None,
        viewport_width: float = 1920.0,
        viewport_height: float = 1080.0,
        document_height: float = 1080.0,
    ) -> None:
        self._window_ms = window_ms
        self._tick_seconds = tick_seconds
        self._clock = clock or _monotonic_ms
        self._wall_clock = wall_clock or datetime.now

        self._buffers: dict[str, deque[RawEvent]] = {name: deque() for name in _BUFFERS}
        self._last_ts: dict[str, float] = {}
        self._pending_keys: dict[str, RawEvent] = {}
        self._pending_presses: dict[int, RawEvent] = {}

        now = self._clock()
        self._session_start = now
        self._last_activity = now
        self._last_extraction = now
        self._host_offset: float | None = None

        self._viewport = (
            _finite(viewport_width, 1920.0),
            _finite(viewport_height, 1080.0),
            _finite(document_height, 1080.0),
        )

        self._on_window_ready: WindowCallback | None = None
        self._running = False
        self._task: asyncio.Task | None = None
        self._events_seen = 0
        self._windows_emitted = 0

    # ── Lifecycle ─────────────────────────────────────────────

    async def start(self, on_window_ready: WindowCallback) -> None:
        """Begin accepting events and start the periodic tick."""
        if self._running:
            return
        self._on_window_ready = on_window_ready
        self._running = True
        now = self._clock()
        self._session_start = now
        self._last_activity = now
        self._last_extraction = now
        self._host_offset = None
        self._task = asyncio.create_task(self._run_loop())
        logger.info("collector.started", window_ms=self._window_ms, tick_seconds=self._tick_seconds)

    async def stop(self) -> None:
        """Stop accepting events and halt the tick."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("collector.stopped", events=self._events_seen, windows=self._windows_emitted)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "events_seen": self._events_seen,
            "windows_emitted": self._windows_emitted,
            "buffered": {name: len(buf) for name, buf in self._buffers.items()},
        }

    async def _run_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._tick_seconds)
            try:
                await self.tick()
            except Exception:
                logger.exception("collector.tick_error")

    # ── Ingestion ─────────────────────────────────────────────

    def handle_event(self, event: RawEvent) -> bool:
        """Record one host event.  Returns ``False`` when the collector is stopped."""
        if not self._running:
            return False

        if not math.isfinite(event.timestamp):
            event.timestamp = self._clock()
        self._last_activity = max(self._last_activity, event.timestamp)
        self._events_seen += 1

        if event.category is EventCategory.KEYUP:
            pending = self._pending_keys.pop(event.code, None)
            if pending is not None:
                pending.hold_duration = max(0.0, event.timestamp - pending.timestamp)
            return True
        if event.category is EventCategory.POINTER_UP:
            pending = self._pending_presses.pop(event.button, None)
            if pending is not None:
                pending.duration = max(0.0, event.timestamp - pending.timestamp)
            return True

        name = _BUFFER_FOR[event.category]
        last = self._last_ts.get(name)
        if last is not None and event.timestamp < last:
            event.timestamp = last
        self._last_ts[name] = event.timestamp
        self._buffers[name].append(event)

        if event.category is EventCategory.KEYDOWN:
            self._pending_keys.setdefault(event.code, event)
        elif event.category is EventCategory.POINTER_DOWN:
            self._pending_presses.setdefault(event.button, event)

        self._trim(name, event.timestamp - 2 * self._window_ms)
        return True

    def align_host_clock(self, latest_host_ts: float) -> float:
        """Offset mapping host timestamps onto the collector clock.

        The first batch of a session anchors the offset; later batches may
        only move it forward, so a batch that arrives with less delay than
        the previous one keeps its spacing instead of overlapping it.  A
        host clock that jumps more than one window ahead re-anchors.
        """
        candidate = self._clock() - latest_host_ts
        if (
            self._host_offset is None
            or candidate > self._host_offset
            or candidate < self._host_offset - self._window_ms
        ):
            self._host_offset = candidate
        return self._host_offset

    def record(self, category: EventCategory | str, timestamp: Any = None, **payload: Any) -> bool:
        """Convenience wrapper building a :class:`RawEvent` from keyword payload."""
        return self.handle_event(RawEvent.from_payload(category, timestamp, **payload))

    def update_viewport(
        self,
        width: float | None = None,
        height: float | None = None,
        document_height: float | None = None,
    ) -> None:
        """Update the page geometry used for coverage and scroll depth."""
        w, h, d = self._viewport
        self._viewport = (
            _finite(width, w) if width is not None else w,
            _finite(height, h) if height is not None else h,
            _finite(document_height, d) if document_height is not None else d,
        )

    def _trim(self, name: str, cutoff: float) -> None:
        buf = self._buffers[name]
        while buf and buf[0].timestamp <= cutoff:
            dropped = buf.popleft()
            if dropped.category is EventCategory.KEYDOWN:
                if self._pending_keys.get(dropped.code) is dropped:
                    del self._pending_keys[dropped.code]
            elif self._pending_presses.get(dropped.button) is dropped:
                del self._pending_presses[dropped.button]

    def _trim_all(self, now: float) -> None:
        cutoff = now - 2 * self._window_ms
        for name in _BUFFERS:
            self._trim(name, cutoff)

    # ── Windowing ─────────────────────────────────────────────

    async def tick(self) -> WindowSnapshot | None:
        """Run one scheduling step; emit a window when one has elapsed.

        Returns the emitted snapshot, or ``None`` when nothing was emitted.
        """
        now = self._clock()
        if now - self._last_extraction < self._window_ms:
            return None
        self._last_extraction = now
        self._trim_all(now)

        snapshot = self.current_window(now)
        if snapshot is None:
            logger.debug("collector.window_empty")
            return None

        self._windows_emitted += 1
        logger.debug(
            "collector.window_ready",
            keystrokes=len(snapshot.keystrokes),
            pointer_moves=len(snapshot.pointer_moves),
            clicks=len(snapshot.clicks),
            scrolls=len(snapshot.scrolls),
        )
        if self._on_window_ready is not None:
            try:
                result = self._on_window_ready(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error("collector.callback_error", error=str(exc))
        return snapshot

    def current_window(self, now: float | None = None) -> WindowSnapshot | None:
        """Copy the events of the active window, or ``None`` if it has no activity."""
        now = self._clock() if now is None else now
        window_start = now - self._window_ms

        def _recent(name: str) -> list[RawEvent]:
            return [replace(e) for e in self._buffers[name] if e.timestamp > window_start]

        width, height, doc_height = self._viewport
        snapshot = WindowSnapshot(
            keystrokes=_recent("keystrokes"),
            pointer_moves=_recent("pointer_moves"),
            clicks=_recent("clicks"),
            presses=_recent("presses"),
            scrolls=_recent("scrolls"),
            focus_events=_recent("focus_events"),
            session_duration_ms=max(0.0, now - self._session_start),
            time_since_last_activity_ms=max(0.0, now - self._last_activity),
            timestamp=now,
            captured_at=self._wall_clock(),
            viewport_width=width,
            viewport_height=height,
            document_height=doc_height,
        )
        if not snapshot.has_activity:
            return None
        return snapshot

    def get_buffer(self) -> dict[str, list[RawEvent]]:
        """Shallow copy of every buffer (debugging / export)."""
        return {name: list(buf) for name, buf in self._buffers.items()}

    def clear_buffer(self) -> None:
        for buf in self._buffers.values():
            buf.clear()
        self._last_ts.clear()
        self._pending_keys.clear()
        self._pending_presses.clear()
