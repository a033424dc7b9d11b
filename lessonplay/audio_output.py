"""Speaker output for narration WAVs via sounddevice (PortAudio)."""
from __future__ import annotations

import asyncio
import io
import logging
import wave
from typing import Callable

import numpy as np

log = logging.getLogger(__name__)


class AutoplayBlocked(Exception):
    """The playback environment refused to start audio.

    Not an error condition for the player: it falls back to paused.
    """


def _sounddevice():
    try:
        import sounddevice as sd
    except OSError as e:  # PortAudio shared library missing
        raise AutoplayBlocked(f"No audio backend available: {e}") from e
    return sd


def decode_wav(payload: bytes) -> tuple[np.ndarray, int]:
    """Decode 16/32-bit PCM WAV bytes to float32 frames ``(n, channels)``."""
    with wave.open(io.BytesIO(payload)) as wf:
        sample_width = wf.getsampwidth()
        channels = wf.getnchannels()
        sample_rate = wf.getframerate()
        frames = wf.readframes(wf.getnframes())

    if sample_width not in (2, 4):
        raise ValueError("Only 16-bit or 32-bit PCM WAV files are supported.")

    dtype = np.int16 if sample_width == 2 else np.int32
    audio = np.frombuffer(frames, dtype=dtype).reshape(-1, channels)

    max_int = float(2 ** (sample_width * 8 - 1))
    return audio.astype(np.float32) / max_int, sample_rate


class SoundDeviceOutput:
    """Pausable single-clip player.

    ``on_finished`` passed to :meth:`load` fires only when a clip plays to its
    natural end, never after :meth:`pause` or :meth:`unload`. PortAudio calls
    back on its own thread, so the notification is handed to *dispatch*
    (``loop.call_soon_threadsafe`` of the loop that called :meth:`load` when
    omitted).
    """

    def __init__(
        self,
        dispatch: Callable[[Callable[[], None]], None] | None = None,
        device: int | str | None = None,
    ) -> None:
        self._dispatch = dispatch
        self._device = device
        self._sd = None
        self._stream = None
        self._frames: np.ndarray | None = None
        self._sample_rate = 0
        self._pos = 0
        self._completed = False
        self._on_finished: Callable[[], None] | None = None
        self._notify: Callable[[Callable[[], None]], None] | None = None

    @property
    def loaded(self) -> bool:
        return self._frames is not None

    def load(self, wav_bytes: bytes, on_finished: Callable[[], None] | None = None) -> None:
        """Replace the current clip with *wav_bytes*, positioned at the start."""
        self.unload()
        self._frames, self._sample_rate = decode_wav(wav_bytes)
        self._pos = 0
        self._completed = False
        self._on_finished = on_finished

        if self._dispatch is not None:
            self._notify = self._dispatch
        else:
            try:
                self._notify = asyncio.get_running_loop().call_soon_threadsafe
            except RuntimeError:
                self._notify = lambda cb: cb()

    def play(self) -> None:
        """Start or resume the loaded clip.

        Raises:
            AutoplayBlocked: If no output device could be opened or started.
        """
        if self._frames is None:
            return
        if self._stream is not None and self._stream.active:
            return

        sd = self._sd or _sounddevice()
        self._sd = sd
        try:
            if self._stream is None:
                self._stream = sd.OutputStream(
                    samplerate=self._sample_rate,
                    channels=self._frames.shape[1],
                    dtype="float32",
                    device=self._device,
                    callback=self._callback,
                    finished_callback=self._finished,
                )
            elif not self._stream.stopped:
                self._stream.stop()

            if self._completed or self._pos >= len(self._frames):
                self._pos = 0
            self._completed = False
            self._stream.start()
        except sd.PortAudioError as e:
            raise AutoplayBlocked(str(e)) from e

    def pause(self) -> None:
        if self._stream is not None and self._stream.active:
            self._completed = False
            self._stream.stop()

    def unload(self) -> None:
        """Stop playback and drop the decoded clip."""
        self._on_finished = None
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.abort()
                stream.close()
            except Exception as e:
                log.warning("Failed to close audio stream: %s", e)
        self._frames = None
        self._pos = 0
        self._completed = False

    # ------------------------------------------------------------------
    # PortAudio thread
    # ------------------------------------------------------------------

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status:
            log.debug("Audio stream status: %s", status)
        source = self._frames
        if source is None:
            outdata.fill(0)
            raise self._sd.CallbackAbort

        chunk = source[self._pos:self._pos + frames]
        n = len(chunk)
        outdata[:n] = chunk
        self._pos += n
        if n < frames:
            outdata[n:] = 0
            self._completed = True
            raise self._sd.CallbackStop

    def _finished(self) -> None:
        callback = self._on_finished
        if self._completed and callback is not None and self._notify is not None:
            self._notify(callback)
