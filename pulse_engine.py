"""
pulsebeats - Pulse Decay Engine
Accumulates beat intensity into one activity level that drives a background
effect, decays it every animation tick and fades it out after the last beat.

The tick loop only runs while there is activity: the first pulse starts it,
and it stops itself once the fade-out completes. The next pulse restarts it
immediately.
"""

import itertools
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from config import PulseConfig, validate_pulse_config
from logging_utils import log_event

TickCallback = Callable[[float], None]


class TickScheduler(Protocol):
    def request_tick(self, callback: TickCallback) -> int: ...
    def cancel_tick(self, handle: int) -> None: ...


@dataclass(frozen=True)
class RenderFrame:
    level: float              # Decayed activity level (0.0-1.0)
    fade_multiplier: float    # 1.0 right after a beat, 0.0 when fully faded
    timestamp: float


class RenderSink(Protocol):
    def render(self, frame: RenderFrame) -> None: ...
    def clear(self) -> None: ...


class ManualTickScheduler:
    """Cooperative scheduler: pending ticks run when the host calls advance().

    Callbacks requested while advance() is running wait for the next call,
    matching one callback per animation frame.
    """

    def __init__(self):
        self._pending: dict[int, TickCallback] = {}
        self._handles = itertools.count(1)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def request_tick(self, callback: TickCallback) -> int:
        handle = next(self._handles)
        self._pending[handle] = callback
        return handle

    def cancel_tick(self, handle: int) -> None:
        self._pending.pop(handle, None)

    def advance(self, now: float) -> int:
        """Run every tick pending at call time. Returns how many ran."""
        due = list(self._pending.items())
        self._pending.clear()
        for _, callback in due:
            callback(now)
        return len(due)


@dataclass
class PulseState:
    level: float = 0.0
    last_beat_time: Optional[float] = None
    running: bool = False


class PulseDecayEngine:
    def __init__(self, config: PulseConfig, scheduler: TickScheduler,
                 sink: Optional[RenderSink] = None,
                 clock: Callable[[], float] = time.monotonic):
        validate_pulse_config(config)
        self.config = config
        self.scheduler = scheduler
        self.sink = sink
        self._clock = clock
        self.state = PulseState()
        self._tick_handle: Optional[int] = None
        self._last_tick_time: Optional[float] = None
        self.frames_rendered = 0

    @property
    def running(self) -> bool:
        return self.state.running

    @property
    def level(self) -> float:
        return self.state.level

    def trigger_pulse(self, intensity: float, now: Optional[float] = None) -> None:
        """Boost the level by ``intensity * pulse_gain`` (capped at 1.0) and make sure ticks run."""
        if intensity <= 0:
            return
        now = self._clock() if now is None else now

        self.state.last_beat_time = now
        self.state.level = min(1.0, self.state.level + intensity * self.config.pulse_gain)

        if not self.state.running:
            self.state.running = True
            self._schedule_tick()
            log_event("DEBUG", "Pulse", "Started", pulse_level=self.state.level)

    def fade_multiplier(self, now: float) -> float:
        if self.state.last_beat_time is None:
            return 0.0
        elapsed_ms = (now - self.state.last_beat_time) * 1000.0
        delay_ms = self.config.fade_start_delay_ms
        if elapsed_ms <= delay_ms:
            return 1.0
        return max(0.0, 1.0 - (elapsed_ms - delay_ms) / self.config.fade_duration_ms)

    def tick(self, now: Optional[float] = None) -> Optional[RenderFrame]:
        """Advance one animation frame. Returns the rendered frame, or None once stopped."""
        if not self.state.running:
            return None
        now = self._clock() if now is None else now
        # A direct call consumes this frame's scheduled tick
        self._cancel_tick()
        self._last_tick_time = now

        level = self.state.level * self.config.decay_factor
        self.state.level = 0.0 if level < self.config.level_floor else level

        fade = self.fade_multiplier(now)
        if fade <= 0.0:
            self._stop()
            return None

        frame = RenderFrame(level=self.state.level, fade_multiplier=fade, timestamp=now)
        if self.sink is not None:
            self.sink.render(frame)
        self.frames_rendered += 1
        self._schedule_tick()
        return frame

    def reset(self) -> None:
        """Playback stopped or a new file was loaded: drop all activity."""
        self._cancel_tick()
        self._last_tick_time = None
        self.state = PulseState()
        if self.sink is not None:
            self.sink.clear()

    def _on_tick(self, now: float) -> None:
        self._tick_handle = None
        if self._last_tick_time is not None and now <= self._last_tick_time:
            # Frame already ticked directly; one decay per frame
            self._schedule_tick()
            return
        self.tick(now)

    def _schedule_tick(self) -> None:
        if self._tick_handle is None:
            self._tick_handle = self.scheduler.request_tick(self._on_tick)

    def _cancel_tick(self) -> None:
        if self._tick_handle is not None:
            self.scheduler.cancel_tick(self._tick_handle)
            self._tick_handle = None

    def _stop(self) -> None:
        self._cancel_tick()
        self.state.running = False
        self.state.level = 0.0
        if self.sink is not None:
            self.sink.clear()
        log_event("DEBUG", "Pulse", "Faded out, tick loop stopped", frames=self.frames_rendered)
