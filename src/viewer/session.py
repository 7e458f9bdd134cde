from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

from common.scheduler import TaskScheduler

from .narration import NarrationSynchronizer, NarrationToken


logger = logging.getLogger(__name__)


class Mode(str, Enum):
    TEXT = "text"
    PRESENTATION = "presentation"


class Narratable(Protocol):
    """Anything with a name and an ordered list of narration steps."""

    @property
    def name(self) -> str:
        ...

    @property
    def steps(self) -> List[str]:
        ...


def _target_id(target: Narratable) -> str:
    return str(getattr(target, "id", None) or target.name)


@dataclass
class PlaybackSession:
    """Ephemeral per-page state. `active_region is None` means Idle."""

    active_region: Optional[Narratable] = None
    current_step_index: int = 0
    transcript: List[str] = field(default_factory=list)
    mode: Mode = Mode.TEXT

    @property
    def is_idle(self) -> bool:
        return self.active_region is None


class RegionSession:
    """
    Region interaction state machine for one page view.

    States: Idle, or Active(region, step_index, mode).

    - `click(region)`: from any state → Active(region, 0, Text). Clicking the
      active region again restarts its narration (transcript back to one entry).
    - `advance_step()`: appends the next step to the transcript; a no-op on
      the last step.
    - `toggle_mode()`: Text ⇄ Presentation, step index untouched. Presentation
      stops audio at once; returning to Text replays the current step.
    - `navigate_away()`: → Idle, media stopped synchronously.

    Every transition starts a new scheduler generation, so timers and load
    callbacks belonging to an earlier click can no longer fire.
    """

    def __init__(
        self,
        *,
        worksheet_id: str,
        page_index: int,
        scheduler: TaskScheduler,
        narrator: Optional[NarrationSynchronizer] = None,
    ) -> None:
        self.worksheet_id = worksheet_id
        self.page_index = page_index
        self._scheduler = scheduler
        self._narrator = narrator
        self._state = PlaybackSession()

    # --------------- Introspection ---------------
    @property
    def state(self) -> PlaybackSession:
        return self._state

    @property
    def active_region(self) -> Optional[Narratable]:
        return self._state.active_region

    @property
    def step_index(self) -> int:
        return self._state.current_step_index

    @property
    def transcript(self) -> List[str]:
        return list(self._state.transcript)

    @property
    def mode(self) -> Mode:
        return self._state.mode

    @property
    def has_next_step(self) -> bool:
        region = self._state.active_region
        return region is not None and self._state.current_step_index < len(region.steps) - 1

    # --------------- Transitions ---------------
    def click(self, region: Narratable) -> None:
        self._interrupt()
        steps = region.steps
        if not steps:
            # Nothing to narrate; a step index into an empty script is meaningless
            logger.info("Region %s has no narration steps; staying idle", region.name)
            self._state = PlaybackSession()
            return
        logger.info("Region clicked: %s", region.name)
        self._state = PlaybackSession(
            active_region=region,
            current_step_index=0,
            transcript=[steps[0]],
            mode=Mode.TEXT,
        )
        self._narrate()

    def advance_step(self) -> bool:
        """Returns True if the step advanced."""
        if not self.has_next_step:
            return False
        region = self._state.active_region
        assert region is not None
        self._interrupt()
        self._state.current_step_index += 1
        self._state.transcript.append(region.steps[self._state.current_step_index])
        logger.debug("Advanced %s to step %d", region.name, self._state.current_step_index)
        if self._state.mode is Mode.TEXT:
            self._narrate()
        return True

    def toggle_mode(self) -> Mode:
        if self._state.active_region is None:
            return self._state.mode
        self._interrupt()
        if self._state.mode is Mode.TEXT:
            self._state.mode = Mode.PRESENTATION
        else:
            self._state.mode = Mode.TEXT
            self._narrate()
        return self._state.mode

    def navigate_away(self) -> None:
        self._interrupt()
        self._state = PlaybackSession()

    def retry_narration(self) -> None:
        if self._narrator is not None and self._state.active_region is not None:
            self._narrator.retry()

    # --------------- Internal ---------------
    def _interrupt(self) -> None:
        self._scheduler.next_generation()
        if self._narrator is not None:
            self._narrator.stop()

    def _narrate(self) -> None:
        region = self._state.active_region
        if self._narrator is None or region is None:
            return
        token = NarrationToken(
            worksheet_id=self.worksheet_id,
            page_index=self.page_index,
            region_id=_target_id(region),
            step_index=self._state.current_step_index,
            generation=self._scheduler.generation,
        )
        self._narrator.start_step(token, region.name)


class GuidedSession(RegionSession):
    """
    Session over the guidance items of a guided worksheet page.

    Unlike regions, an item resumes where it was left: clicking it again
    restores its saved step with the transcript filled up to that step.
    Progress is keyed `{page}_{title}` in a dict owned by the caller, so it
    outlives the page view. `deactivate()` returns to the item list without
    leaving the page.
    """

    def __init__(
        self,
        *,
        worksheet_id: str,
        page_index: int,
        scheduler: TaskScheduler,
        narrator: Optional[NarrationSynchronizer] = None,
        progress: Optional[Dict[str, int]] = None,
    ) -> None:
        super().__init__(
            worksheet_id=worksheet_id, page_index=page_index, scheduler=scheduler, narrator=narrator
        )
        self._progress = progress if progress is not None else {}

    def progress_key(self, item: Narratable) -> str:
        return f"{self.page_index}_{item.name}"

    def saved_step(self, item: Narratable) -> int:
        return self._progress.get(self.progress_key(item), 0)

    def click(self, region: Narratable) -> None:
        self._interrupt()
        steps = region.steps
        if not steps:
            self._state = PlaybackSession()
            return
        start = min(self.saved_step(region), len(steps) - 1)
        logger.info("Guidance item selected: %s (step %d)", region.name, start)
        self._state = PlaybackSession(
            active_region=region,
            current_step_index=start,
            transcript=steps[: start + 1],
            mode=Mode.TEXT,
        )
        self._narrate()

    def advance_step(self) -> bool:
        advanced = super().advance_step()
        if advanced:
            self._remember()
        return advanced

    def deactivate(self) -> None:
        self._remember()
        self._interrupt()
        self._state = PlaybackSession()

    def _remember(self) -> None:
        item = self._state.active_region
        if item is not None:
            self._progress[self.progress_key(item)] = self._state.current_step_index


__all__ = ["GuidedSession", "Mode", "Narratable", "PlaybackSession", "RegionSession"]
