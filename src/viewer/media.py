from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from common.errors import PlaybackError


# Event names mirror the HTML media element events the host forwards
PLAYING = "playing"
PAUSE = "pause"
ENDED = "ended"
TIMEUPDATE = "timeupdate"
CANPLAY = "canplay"
ERROR = "error"


@dataclass(frozen=True)
class MediaEvent:
    type: str
    src: Optional[str]
    time: float


Handler = Callable[[MediaEvent], None]


class MediaElement(Protocol):
    """What the playback code needs from an audio or video element."""

    src: Optional[str]
    current_time: float

    @property
    def paused(self) -> bool:
        ...

    @property
    def duration(self) -> Optional[float]:
        ...

    def load(self, src: str) -> None:
        ...

    def play(self) -> None:
        ...

    def pause(self) -> None:
        ...

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        ...


class HeadlessMedia:
    """
    Clock-driven media element with no decoder behind it.

    - `load(src)` resets position and waits for the host (or a test) to call
      `resolve_load()` (fires canplay) or `fail_load()` (fires error).
    - `advance(dt)` moves the playhead when playing and fires timeupdate;
      reaching the duration fires ended (or wraps when `loop=True`).
    - `play()` on an element whose load failed raises PlaybackError, like a
      rejected play() promise.

    Used in tests and by hosts that forward events from a real player.
    """

    def __init__(self, *, duration: Optional[float] = None, loop: bool = False, name: str = "media") -> None:
        self.name = name
        self.src: Optional[str] = None
        self._time = 0.0
        self._duration = duration
        self._paused = True
        self._loop = loop
        self._ready = False
        self._failed = False
        self._handlers: Dict[str, List[Handler]] = {}
        self.play_calls = 0

    # --------------- MediaElement ---------------
    @property
    def current_time(self) -> float:
        return self._time

    @current_time.setter
    def current_time(self, value: float) -> None:
        if self._duration is not None:
            value = min(value, self._duration)
        self._time = max(0.0, float(value))

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def duration(self) -> Optional[float]:
        return self._duration

    @property
    def ready(self) -> bool:
        return self._ready

    def load(self, src: str) -> None:
        if not self._paused:
            self.pause()
        self.src = src
        self._time = 0.0
        self._ready = False
        self._failed = False

    def play(self) -> None:
        self.play_calls += 1
        if self._failed:
            raise PlaybackError(f"{self.name}: cannot play {self.src}", details="load failed")
        if self.src is None:
            raise PlaybackError(f"{self.name}: no source")
        if not self._paused:
            return
        self._paused = False
        self._emit(PLAYING)

    def pause(self) -> None:
        if self._paused:
            return
        self._paused = True
        self._emit(PAUSE)

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        self._handlers.setdefault(event, []).append(handler)

        def off() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return off

    # --------------- Host / test drivers ---------------
    def resolve_load(self, *, src: Optional[str] = None, duration: Optional[float] = None) -> None:
        """Signal enough data is buffered. `src` lets a late, superseded load report in."""
        if src is None or src == self.src:
            self._ready = True
            if duration is not None:
                self._duration = duration
        self._emit(CANPLAY, src=src if src is not None else self.src)

    def fail_load(self, *, src: Optional[str] = None) -> None:
        if src is None or src == self.src:
            self._failed = True
        self._emit(ERROR, src=src if src is not None else self.src)

    def advance(self, dt: float) -> None:
        if self._paused:
            return
        self._time += dt
        if self._duration is not None and self._time >= self._duration:
            if self._loop:
                self._time = self._time % self._duration
            else:
                self._time = self._duration
                self._paused = True
                self._emit(TIMEUPDATE)
                self._emit(ENDED)
                return
        self._emit(TIMEUPDATE)

    def stall(self) -> None:
        """Pause without an event, as a throttled background tab does."""
        self._paused = True

    def _emit(self, event: str, *, src: Optional[str] = None) -> None:
        ev = MediaEvent(type=event, src=src if src is not None else self.src, time=self._time)
        for handler in list(self._handlers.get(event, [])):
            handler(ev)


__all__ = [
    "CANPLAY",
    "ENDED",
    "ERROR",
    "HeadlessMedia",
    "MediaElement",
    "MediaEvent",
    "PAUSE",
    "PLAYING",
    "TIMEUPDATE",
]
