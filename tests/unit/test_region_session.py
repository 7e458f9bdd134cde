from __future__ import annotations

from common.scheduler import TaskScheduler
from store.models import GuidanceItem, Region
from viewer.media import HeadlessMedia
from viewer.narration import NarrationSynchronizer
from viewer.notices import Notifier
from viewer.session import GuidedSession, Mode, RegionSession


def _region(rid: str, name: str, steps: list[str]) -> Region:
    return Region(id=rid, page=1, x=10, y=10, width=50, height=20, name=name, description=steps)


A = _region("r-a", "A", ["a1", "a2", "a3"])
B = _region("r-b", "B", ["b1", "b2"])


def _rig(clock):
    scheduler = TaskScheduler(clock=clock)
    audio = HeadlessMedia(duration=5.0, name="audio")
    video = HeadlessMedia(duration=20.0, name="video")
    video.load("/video/default.mp4")
    narrator = NarrationSynchronizer(
        audio=audio,
        video=video,
        scheduler=scheduler,
        notifier=Notifier(),
        audio_base="/audio",
        start_delay=0.0,
    )
    session = RegionSession(worksheet_id="WS1", page_index=1, scheduler=scheduler, narrator=narrator)
    return session, narrator, audio, video


def test_initial_state_is_idle(clock):
    session, *_ = _rig(clock)
    assert session.state.is_idle
    assert session.transcript == []
    assert not session.has_next_step


def test_click_activates_first_step_in_text_mode(clock):
    session, narrator, audio, _ = _rig(clock)
    session.click(A)
    assert session.active_region == A
    assert session.step_index == 0
    assert session.mode is Mode.TEXT
    assert session.transcript == ["a1"]
    assert audio.src == "/audio/WS1/A_1.mp3"


def test_reclick_restarts_narration_instead_of_appending(clock):
    session, *_ = _rig(clock)
    session.click(A)
    session.advance_step()
    session.click(B)
    session.click(A)
    assert session.active_region == A
    assert session.step_index == 0
    assert len(session.transcript) == 1


def test_clicking_the_active_region_restarts_it(clock):
    session, narrator, _, _ = _rig(clock)
    session.click(A)
    session.advance_step()
    first_token = narrator.token
    session.click(A)
    assert session.transcript == ["a1"]
    assert narrator.token is not None
    assert narrator.token.step_index == 0
    assert narrator.token.generation > first_token.generation


def test_advance_appends_and_stops_at_last_step(clock):
    session, narrator, audio, _ = _rig(clock)
    session.click(A)
    assert session.advance_step() is True
    assert session.advance_step() is True
    assert session.transcript == ["a1", "a2", "a3"]
    assert audio.src == "/audio/WS1/A_3.mp3"

    generation = narrator.token.generation
    assert session.advance_step() is False
    assert session.step_index == 2
    assert session.transcript == ["a1", "a2", "a3"]
    assert narrator.token.generation == generation


def test_advance_when_idle_is_noop(clock):
    session, *_ = _rig(clock)
    assert session.advance_step() is False
    assert session.state.is_idle


def test_toggle_to_presentation_stops_audio_and_keeps_step(clock):
    session, narrator, audio, video = _rig(clock)
    session.click(A)
    session.advance_step()
    audio.resolve_load()
    audio.advance(1.0)
    assert not audio.paused

    assert session.toggle_mode() is Mode.PRESENTATION
    assert audio.paused
    assert audio.current_time == 0.0
    assert video.paused
    assert session.step_index == 1
    assert session.transcript == ["a1", "a2"]


def test_toggle_back_to_text_replays_current_step_from_start(clock):
    session, narrator, audio, _ = _rig(clock)
    session.click(A)
    session.advance_step()
    session.toggle_mode()
    assert narrator.token is None

    assert session.toggle_mode() is Mode.TEXT
    assert narrator.token is not None and narrator.token.step_index == 1
    assert audio.src == "/audio/WS1/A_2.mp3"
    assert audio.current_time == 0.0


def test_advance_in_presentation_mode_does_not_start_audio(clock):
    session, narrator, audio, _ = _rig(clock)
    session.click(A)
    session.toggle_mode()
    assert session.advance_step() is True
    assert session.transcript == ["a1", "a2"]
    assert narrator.token is None
    assert audio.paused


def test_toggle_when_idle_is_noop(clock):
    session, *_ = _rig(clock)
    assert session.toggle_mode() is Mode.TEXT
    assert session.state.is_idle


def test_navigate_away_clears_session_and_stops_media(clock):
    session, narrator, audio, video = _rig(clock)
    session.click(A)
    audio.resolve_load()
    video.advance(0.5)
    session.navigate_away()

    assert session.state.is_idle
    assert session.step_index == 0
    assert session.transcript == []
    assert audio.paused and audio.current_time == 0.0
    assert video.paused and video.current_time == 0.0
    assert narrator.token is None


def test_region_without_steps_leaves_session_idle(clock):
    session, narrator, audio, _ = _rig(clock)
    session.click(A)
    session.click(_region("r-empty", "Empty", []))
    assert session.state.is_idle
    assert narrator.token is None
    assert audio.paused


def test_guidance_items_run_without_narrator(clock):
    scheduler = TaskScheduler(clock=clock)
    session = RegionSession(worksheet_id="WS2", page_index=3, scheduler=scheduler)
    item = GuidanceItem(title="Intro", description="first\n\nsecond\n")
    session.click(item)
    assert session.transcript == ["first"]
    assert session.advance_step() is True
    assert session.transcript == ["first", "second"]
    assert session.advance_step() is False


INTRO = GuidanceItem(title="Intro", description="first\nsecond\nthird")
OUTRO = GuidanceItem(title="Outro", description="last")


def test_guided_item_resumes_at_saved_step(clock):
    session = GuidedSession(worksheet_id="WS2", page_index=3, scheduler=TaskScheduler(clock=clock))
    session.click(INTRO)
    session.advance_step()
    session.click(OUTRO)
    assert session.transcript == ["last"]

    session.click(INTRO)
    assert session.step_index == 1
    assert session.transcript == ["first", "second"]
    assert session.has_next_step


def test_guided_deactivate_returns_to_list_and_keeps_progress(clock):
    progress: dict[str, int] = {}
    session = GuidedSession(
        worksheet_id="WS2", page_index=3, scheduler=TaskScheduler(clock=clock), progress=progress
    )
    session.click(INTRO)
    session.advance_step()
    session.advance_step()
    session.deactivate()

    assert session.state.is_idle
    assert session.transcript == []
    assert progress == {"3_Intro": 2}

    # A fresh session over the same store (page revisited) resumes too
    again = GuidedSession(
        worksheet_id="WS2", page_index=3, scheduler=TaskScheduler(clock=clock), progress=progress
    )
    again.click(INTRO)
    assert again.transcript == ["first", "second", "third"]
    assert not again.has_next_step


def test_guided_progress_is_per_page(clock):
    progress = {"3_Intro": 1}
    session = GuidedSession(
        worksheet_id="WS2", page_index=4, scheduler=TaskScheduler(clock=clock), progress=progress
    )
    session.click(INTRO)
    assert session.step_index == 0
