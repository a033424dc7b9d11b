"""WAV container construction for raw PCM narration.

Gemini TTS hands back headerless 16-bit little-endian PCM. Audio devices and
the stdlib ``wave`` module want a RIFF/WAVE file, so we synthesize the
canonical 44-byte header and prepend it to the untouched samples.
"""
from __future__ import annotations

import math
import struct
from dataclasses import dataclass

from .config import PCM_CHANNELS, PCM_SAMPLE_RATE

HEADER_SIZE = 44
BITS_PER_SAMPLE = 16
FORMAT_PCM = 1

# RIFF header, fmt chunk and data chunk header, little-endian
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


class InvalidParameter(ValueError):
    """Raised for arguments no valid WAV file could be built from."""


@dataclass(frozen=True)
class WavHeader:
    riff_size: int
    format_tag: int
    channel_count: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_length: int


def _check_sample_rate(sample_rate) -> int:
    if isinstance(sample_rate, bool):
        raise InvalidParameter(f"Invalid sample rate: {sample_rate!r}")
    if isinstance(sample_rate, float):
        if not math.isfinite(sample_rate) or not sample_rate.is_integer():
            raise InvalidParameter(f"Invalid sample rate: {sample_rate!r}")
        sample_rate = int(sample_rate)
    if not isinstance(sample_rate, int) or sample_rate <= 0:
        raise InvalidParameter(f"Invalid sample rate: {sample_rate!r}")
    if sample_rate > 0xFFFFFFFF:
        raise InvalidParameter(f"Sample rate out of range: {sample_rate}")
    return sample_rate


def build_header(data_length: int, sample_rate: int, channel_count: int = PCM_CHANNELS) -> bytes:
    """Return the 44-byte PCM WAV header for *data_length* bytes of samples."""
    sample_rate = _check_sample_rate(sample_rate)
    if channel_count < 1 or channel_count > 0xFFFF:
        raise InvalidParameter(f"Invalid channel count: {channel_count!r}")
    if data_length < 0:
        raise InvalidParameter(f"Invalid data length: {data_length!r}")

    block_align = channel_count * BITS_PER_SAMPLE // 8
    return _HEADER.pack(
        b"RIFF",
        36 + data_length,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk length
        FORMAT_PCM,
        channel_count,
        sample_rate,
        sample_rate * block_align,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_length,
    )


def build_container(pcm: bytes, sample_rate: int = PCM_SAMPLE_RATE, channel_count: int = PCM_CHANNELS) -> bytes:
    """Wrap raw 16-bit PCM samples in a playable WAV byte buffer.

    Args:
        pcm: Headerless signed 16-bit little-endian samples, tightly packed.
        sample_rate: Samples per second, a positive finite integer.
        channel_count: Interleaved channel count (1 for Gemini TTS).

    Returns:
        ``header + pcm`` where the header is exactly 44 bytes.

    Raises:
        InvalidParameter: If the sample rate or channel count is unusable.
    """
    payload = bytes(pcm)
    return build_header(len(payload), sample_rate, channel_count) + payload


def parse_header(buffer: bytes) -> WavHeader:
    """Decode the header produced by :func:`build_container`."""
    if len(buffer) < HEADER_SIZE:
        raise InvalidParameter(f"Buffer too short for a WAV header: {len(buffer)} bytes")

    (riff, riff_size, wave, fmt, fmt_len, format_tag, channels, rate,
     byte_rate, block_align, bits, data, data_length) = _HEADER.unpack_from(buffer)

    if (riff, wave, fmt, data) != (b"RIFF", b"WAVE", b"fmt ", b"data") or fmt_len != 16:
        raise InvalidParameter("Not a canonical PCM WAV header")

    return WavHeader(
        riff_size=riff_size,
        format_tag=format_tag,
        channel_count=channels,
        sample_rate=rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits,
        data_length=data_length,
    )


def pcm_duration(pcm: bytes, sample_rate: int = PCM_SAMPLE_RATE, channel_count: int = PCM_CHANNELS) -> float:
    """Seconds of audio in a raw PCM buffer."""
    sample_rate = _check_sample_rate(sample_rate)
    return len(pcm) / (sample_rate * channel_count * BITS_PER_SAMPLE // 8)
