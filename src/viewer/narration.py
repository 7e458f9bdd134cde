from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import quote

from common.config import AvatarTiming
from common.errors import PlaybackError
from common.scheduler import TaskScheduler

from .media import CANPLAY, ENDED, ERROR, PAUSE, PLAYING, TIMEUPDATE, MediaElement, MediaEvent
from .notices import Notifier


logger = logging.getLogger(__name__)


class Segment(str, Enum):
    IDLE = "idle"
    TALKING = "talking"


def segment_at(position: float, timing: AvatarTiming) -> Segment:
    """Segment a video position falls in; the gap before T_talk counts as idle."""
    return Segment.TALKING if position >= timing.talk_start else Segment.IDLE


def expected_segment(audio_playing: bool) -> Segment:
    return Segment.TALKING if audio_playing else Segment.IDLE


def audio_path(audio_base: str, worksheet_id: str, region_name: str, step_index: int) -> str:
    """`{base}/{worksheetId}/{regionName}_{step+1}.mp3` (steps are 1-indexed on disk)."""
    base = audio_base.rstrip("/")
    return f"{base}/{quote(worksheet_id)}/{quote(region_name)}_{step_index + 1}.mp3"


@dataclass(frozen=True)
class NarrationToken:
    """Identifies the one narration request allowed to touch the media elements."""

    worksheet_id: str
    page_index: int
    region_id: str
    step_index: int
    generation: int


class NarrationSynchronizer:
    """
    Keeps the narration audio and the two-segment avatar video consistent.

    Audio is the source of truth. The video holds an idle loop `[0, T_idle)`
    and a talking loop `[T_talk, duration)`:

    - audio starts playing → video jumps to T_talk and plays;
    - on each video tick while audio plays, a position before T_talk is a
      mismatch and is corrected to T_talk; near the end it loops to T_talk;
    - once audio pauses or ends, ticks send the video back to 0 whenever it
      sits in the talking segment or near the idle boundary;
    - a video that should be visible but is found paused is restarted.

    Loads are tied to a `NarrationToken`. Ready/error/fallback callbacks for
    any token but the current one are ignored, and `stop()` zeroes both
    elements synchronously before anything new starts.
    """

    def __init__(
        self,
        *,
        audio: MediaElement,
        video: MediaElement,
        scheduler: TaskScheduler,
        notifier: Notifier,
        timing: Optional[AvatarTiming] = None,
        audio_base: str = "/audio",
        ready_timeout: float = 3.0,
        start_delay: float = 0.5,
        is_backgrounded: Callable[[], bool] = lambda: False,
    ) -> None:
        self._audio = audio
        self._video = video
        self._scheduler = scheduler
        self._notifier = notifier
        self._timing = timing or AvatarTiming()
        self._audio_base = audio_base
        self._ready_timeout = ready_timeout
        self._start_delay = start_delay
        self._is_backgrounded = is_backgrounded

        self._token: Optional[NarrationToken] = None
        self._src: Optional[str] = None
        self._region_name: Optional[str] = None
        self._loading = False
        self._talking = False
        self._video_visible = False
        self._failed: Optional[PlaybackError] = None
        self._mismatches = 0

        self._unsubscribe: List[Callable[[], None]] = [
            audio.on(CANPLAY, self._on_audio_ready),
            audio.on(PLAYING, self._on_audio_playing),
            audio.on(PAUSE, self._on_audio_stopped),
            audio.on(ENDED, self._on_audio_stopped),
            audio.on(ERROR, self._on_audio_error),
            video.on(TIMEUPDATE, self._on_video_tick),
        ]

    # --------------- Introspection ---------------
    @property
    def token(self) -> Optional[NarrationToken]:
        return self._token

    @property
    def current_src(self) -> Optional[str]:
        return self._src

    @property
    def talking(self) -> bool:
        return self._talking

    @property
    def video_visible(self) -> bool:
        return self._video_visible

    @property
    def failed(self) -> Optional[PlaybackError]:
        return self._failed

    @property
    def mismatches(self) -> int:
        """Number of idle/talking mismatches corrected so far."""
        return self._mismatches

    def segment(self) -> Segment:
        return segment_at(self._video.current_time, self._timing)

    # --------------- Commands ---------------
    def start_step(self, token: NarrationToken, region_name: str) -> None:
        """Begin narration for `token`; the caller has already called `stop()`."""
        self._token = token
        self._region_name = region_name
        self._src = audio_path(self._audio_base, token.worksheet_id, region_name, token.step_index)
        self._failed = None
        self._loading = False

        # Avatar shows the idle loop while the clip loads
        self._video_visible = True
        self._video.current_time = 0.0
        self._safe_play(self._video, "video")

        if self._start_delay > 0:
            self._scheduler.call_later(self._start_delay, lambda: self._begin_load(token))
        else:
            self._begin_load(token)

    def retry(self) -> None:
        """Reload the current step after a failure."""
        token = self._token
        if token is None or self._region_name is None:
            return
        logger.info("Retrying narration %s", self._src)
        self._failed = None
        self._begin_load(token)

    def stop(self) -> None:
        """Synchronously stop and zero audio and video."""
        self._token = None
        self._loading = False
        self._talking = False
        self._video_visible = False
        self._audio.pause()
        self._audio.current_time = 0.0
        self._video.pause()
        self._video.current_time = 0.0

    def close(self) -> None:
        self.stop()
        for off in self._unsubscribe:
            off()
        self._unsubscribe = []

    def tick(self) -> None:
        """Run one reconciliation pass, as on a video timeupdate."""
        self._reconcile()

    # --------------- Loading ---------------
    def _is_current(self, token: Optional[NarrationToken]) -> bool:
        return (
            token is not None
            and token == self._token
            and token.generation == self._scheduler.generation
        )

    def _begin_load(self, token: NarrationToken) -> None:
        if not self._is_current(token) or self._src is None:
            logger.debug("Discarding stale narration load for %s", token)
            return
        self._loading = True
        self._audio.load(self._src)
        logger.debug("Loading narration %s", self._src)
        if self._is_backgrounded():
            # Background tabs may never report readiness
            self._attempt_play(token, reason="backgrounded")
            return
        self._scheduler.call_later(
            self._ready_timeout, lambda: self._attempt_play(token, reason="ready-timeout")
        )

    def _attempt_play(self, token: NarrationToken, *, reason: str) -> None:
        if not self._is_current(token) or not self._loading or self._failed is not None:
            return
        self._loading = False
        if reason != "ready":
            logger.info("Forcing narration playback (%s): %s", reason, self._src)
        try:
            self._audio.play()
        except PlaybackError as err:
            self._fail(err)

    def _fail(self, err: PlaybackError) -> None:
        self._failed = err
        self._loading = False
        self._talking = False
        logger.warning("Narration failed for %s: %s", self._src, err.message)
        failed_token = self._token

        def retry_failed() -> None:
            if not self._is_current(failed_token):
                logger.debug("Ignoring retry for superseded narration %s", failed_token)
                return
            self.retry()

        self._notifier.error("Audio Error", "Could not load the audio file", retry=retry_failed)

    # --------------- Media events ---------------
    def _on_audio_ready(self, ev: MediaEvent) -> None:
        if ev.src != self._src or not self._loading:
            logger.debug("Ignoring stale ready signal for %s", ev.src)
            return
        if self._token is not None:
            self._attempt_play(self._token, reason="ready")

    def _on_audio_error(self, ev: MediaEvent) -> None:
        if ev.src != self._src or self._token is None:
            logger.debug("Ignoring stale audio error for %s", ev.src)
            return
        self._fail(PlaybackError(f"Failed to load audio: {ev.src}"))

    def _on_audio_playing(self, ev: MediaEvent) -> None:
        if self._token is None or ev.src != self._src:
            return
        self._talking = True
        self._video_visible = True
        self._video.current_time = self._timing.talk_start
        self._safe_play(self._video, "video")

    def _on_audio_stopped(self, ev: MediaEvent) -> None:
        self._talking = False

    def _on_video_tick(self, ev: MediaEvent) -> None:
        self._reconcile()

    def _reconcile(self) -> None:
        t = self._timing
        video = self._video
        position = video.current_time
        duration = video.duration or t.fallback_duration
        audio_playing = self._talking and not self._audio.paused

        if audio_playing:
            if position < t.talk_start:
                self._mismatches += 1
                logger.debug("Avatar in idle segment while talking (t=%.2f); correcting", position)
                video.current_time = t.talk_start
            elif position >= duration - t.loop_epsilon:
                video.current_time = t.talk_start
        else:
            if position >= t.idle_end - t.loop_epsilon:
                video.current_time = 0.0

        if self._video_visible and video.paused:
            self._safe_play(video, "video")

    def _safe_play(self, element: MediaElement, what: str) -> None:
        try:
            element.play()
        except PlaybackError as err:
            logger.warning("Could not play %s: %s", what, err.message)


__all__ = [
    "NarrationSynchronizer",
    "NarrationToken",
    "Segment",
    "audio_path",
    "expected_segment",
    "segment_at",
]
