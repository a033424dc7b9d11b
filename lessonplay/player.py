"""Slideshow playback: main/branch tracks, autoplay and narration handles.

The engine is a plain synchronous state machine driven from the event loop.
Three things feed it: navigation commands from the host, ``on_audio_ended``
notifications from the audio output (already marshalled onto the loop), and
its own auto-advance timer.
"""
from __future__ import annotations

import asyncio
import functools
import itertools
import logging
from enum import Enum
from typing import Any, Callable, Sequence

from .audio_output import AutoplayBlocked
from .config import AUTO_ADVANCE_DELAY, PCM_CHANNELS, PCM_SAMPLE_RATE
from .imagegen import render_placeholder
from .scriptgen import Slide
from .wavutil import InvalidParameter, build_container, pcm_duration

log = logging.getLogger(__name__)

Scheduler = Callable[[float, Callable[[], None]], Any]


class PlaybackState(str, Enum):
    IDLE = "idle"
    MAIN_ACTIVE = "main_active"
    BRANCH_ACTIVE = "branch_active"


class Track:
    """Non-empty slide sequence with a cursor that never leaves its bounds."""

    def __init__(self, slides: Sequence[Slide]) -> None:
        if not slides:
            raise ValueError("A track needs at least one slide")
        self.slides: tuple[Slide, ...] = tuple(slides)
        self.active_index = 0

    def __len__(self) -> int:
        return len(self.slides)

    @property
    def current(self) -> Slide:
        return self.slides[self.active_index]

    @property
    def is_first(self) -> bool:
        return self.active_index == 0

    @property
    def is_last(self) -> bool:
        return self.active_index == len(self.slides) - 1

    def move_to(self, index: int) -> None:
        if not 0 <= index < len(self.slides):
            raise IndexError(f"Slide index {index} out of range 0..{len(self.slides) - 1}")
        self.active_index = index


class AudioHandle:
    """Playable WAV materialized from one slide's raw PCM.

    Must be released explicitly; the engine keeps at most one alive.
    """

    _ids = itertools.count(1)

    def __init__(
        self,
        pcm: bytes,
        sample_rate: int = PCM_SAMPLE_RATE,
        channel_count: int = PCM_CHANNELS,
    ) -> None:
        self.id = next(self._ids)
        self.duration = pcm_duration(pcm, sample_rate, channel_count)
        self._wav: bytes | None = build_container(pcm, sample_rate, channel_count)

    @property
    def released(self) -> bool:
        return self._wav is None

    @property
    def data(self) -> bytes:
        if self._wav is None:
            raise RuntimeError(f"Audio handle {self.id} has been released")
        return self._wav

    def release(self) -> None:
        self._wav = None

    def __repr__(self) -> str:
        state = "released" if self.released else f"{self.duration:.1f}s"
        return f"<AudioHandle {self.id} {state}>"


def _loop_scheduler(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class PlaybackEngine:
    """Navigation and autoplay for the lesson and its visual explanations.

    Args:
        output: Audio device with ``load(wav, on_finished)``, ``play()``
            (may raise :class:`AutoplayBlocked`), ``pause()`` and ``unload()``.
        sample_rate: Rate of the slides' raw PCM.
        scheduler: ``(delay, callback) -> handle-with-cancel()``; defaults to
            ``loop.call_later`` on the running loop.
        on_change: Called with no arguments after every state change.
        auto_advance_delay: Pause between a clip ending and the next slide.
    """

    def __init__(
        self,
        output,
        sample_rate: int = PCM_SAMPLE_RATE,
        scheduler: Scheduler | None = None,
        on_change: Callable[[], None] | None = None,
        auto_advance_delay: float = AUTO_ADVANCE_DELAY,
    ) -> None:
        self._output = output
        self._sample_rate = sample_rate
        self._schedule = scheduler or _loop_scheduler
        self._on_change = on_change or (lambda: None)
        self._auto_advance_delay = auto_advance_delay

        self._state = PlaybackState.IDLE
        self._main: Track | None = None
        self._branch: Track | None = None
        self.auto_play_enabled = True
        self._playing = False
        self._handle: AudioHandle | None = None
        self._live_handles = 0
        self._pending_advance = None

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_branch_active(self) -> bool:
        return self._state is PlaybackState.BRANCH_ACTIVE

    @property
    def main_track(self) -> Track | None:
        return self._main

    @property
    def branch_track(self) -> Track | None:
        return self._branch

    @property
    def active_track(self) -> Track | None:
        if self._state is PlaybackState.BRANCH_ACTIVE:
            return self._branch
        return self._main

    @property
    def active_index(self) -> int:
        track = self.active_track
        return track.active_index if track else 0

    @property
    def active_length(self) -> int:
        track = self.active_track
        return len(track) if track else 0

    @property
    def current_slide(self) -> Slide | None:
        track = self.active_track
        return track.current if track else None

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def can_play(self) -> bool:
        """Whether the play/pause control is enabled for the visible slide."""
        return self._handle is not None

    @property
    def has_previous(self) -> bool:
        track = self.active_track
        return track is not None and not track.is_first

    @property
    def has_next(self) -> bool:
        track = self.active_track
        return track is not None and not track.is_last

    @property
    def audio_handle(self) -> AudioHandle | None:
        return self._handle

    @property
    def live_handles(self) -> int:
        return self._live_handles

    @property
    def scene_label(self) -> str:
        slide = self.current_slide
        if slide is None:
            return ""
        if self.is_branch_active:
            return "Explanation"
        return f"Scene {slide.scene_number}/{len(self._main)}"

    def current_image(self) -> bytes | None:
        """Image bytes for the visible slide, or a rendered placeholder."""
        slide = self.current_slide
        if slide is None:
            return None
        if slide.image_data is not None:
            return slide.image_data
        return render_placeholder(slide.visual_description)

    # ------------------------------------------------------------------
    # Track lifecycle
    # ------------------------------------------------------------------

    def load(self, slides: Sequence[Slide]) -> None:
        """Install the main lesson track and show its first slide."""
        track = Track(slides)
        self._teardown()
        self._main = track
        self._branch = None
        self._state = PlaybackState.MAIN_ACTIVE
        self.auto_play_enabled = True
        log.info("Loaded lesson with %d slides", len(track))
        self._activate()

    def open_branch(self, slides: Sequence[Slide]) -> None:
        """Show a visual explanation; narration starts right away."""
        if self._main is None:
            raise RuntimeError("Cannot open a branch before a lesson is loaded")
        track = Track(slides)
        self._teardown()
        self._branch = track
        self._state = PlaybackState.BRANCH_ACTIVE
        self.auto_play_enabled = True
        log.info("Opened explanation with %d slides", len(track))
        self._activate()

    def close_branch(self) -> bool:
        """Return to the lesson where it was left, without resuming narration."""
        if self._state is not PlaybackState.BRANCH_ACTIVE:
            return False
        self._teardown()
        self._branch = None
        self._state = PlaybackState.MAIN_ACTIVE
        self.auto_play_enabled = False
        self._activate()
        return True

    def reset(self) -> None:
        """Drop every track and return to IDLE."""
        self._teardown()
        self._main = None
        self._branch = None
        self._state = PlaybackState.IDLE
        self.auto_play_enabled = True
        self._on_change()

    def close(self) -> None:
        """Release the live audio handle and any pending timer."""
        self._teardown()

    def __enter__(self) -> "PlaybackEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def next(self) -> bool:
        track = self.active_track
        if track is None or track.is_last:
            return False
        track.move_to(track.active_index + 1)
        self._activate()
        return True

    def previous(self) -> bool:
        track = self.active_track
        if track is None or track.is_first:
            return False
        track.move_to(track.active_index - 1)
        self._activate()
        return True

    def jump(self, index: int) -> None:
        """Go straight to *index* on the active track and narrate it."""
        track = self.active_track
        if track is None:
            raise RuntimeError("No lesson loaded")
        track.move_to(index)
        self.auto_play_enabled = True
        self._activate()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def play(self) -> bool:
        if self._handle is None:
            return False
        self.auto_play_enabled = True
        self._cancel_pending()
        self._start_playback()
        self._on_change()
        return self._playing

    def pause(self) -> None:
        """Stop narration; navigation will not auto-resume it."""
        self.auto_play_enabled = False
        self._cancel_pending()
        if self._handle is not None and self._playing:
            self._output.pause()
        self._playing = False
        self._on_change()

    def toggle_play_pause(self) -> None:
        if self._handle is None:
            return
        if self._playing:
            self.pause()
        else:
            self.play()

    def on_audio_ended(self, handle: AudioHandle) -> None:
        """The output finished *handle* naturally."""
        if handle is not self._handle:
            log.debug("Ignoring end of stale audio %r", handle)
            return
        self._playing = False
        track = self.active_track
        if self.auto_play_enabled and track is not None and not track.is_last:
            self._cancel_pending()
            self._pending_advance = self._schedule(self._auto_advance_delay, self._auto_advance)
        self._on_change()

    def _auto_advance(self) -> None:
        self._pending_advance = None
        self.next()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _activate(self) -> None:
        """Swap the narration handle over to the visible slide."""
        self._cancel_pending()
        self._release_handle()

        slide = self.current_slide
        if slide is not None and slide.audio_data is not None:
            try:
                handle = AudioHandle(slide.audio_data, self._sample_rate)
            except InvalidParameter as e:
                log.error("Failed to process audio data: %s", e)
            else:
                self._handle = handle
                self._live_handles += 1
                self._output.load(handle.data, functools.partial(self.on_audio_ended, handle))
                if self.auto_play_enabled:
                    self._start_playback()

        self._on_change()

    def _start_playback(self) -> None:
        try:
            self._output.play()
        except AutoplayBlocked as e:
            log.warning("Auto-play prevented: %s", e)
            self._playing = False
        else:
            self._playing = True

    def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        self._playing = False
        if handle is None:
            return
        self._output.unload()
        handle.release()
        self._live_handles -= 1

    def _cancel_pending(self) -> None:
        pending, self._pending_advance = self._pending_advance, None
        if pending is not None:
            pending.cancel()

    def _teardown(self) -> None:
        self._cancel_pending()
        self._release_handle()
