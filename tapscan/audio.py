"""Rendering TAP images as 8-bit mono audio (Sun AU and Microsoft WAV)."""

from __future__ import annotations

import math
import struct
from functools import lru_cache
from pathlib import Path
from typing import BinaryIO, Iterator, Union

from .tapfile import CYCLES_PER_SECOND, HEADER_SIZE, TapImage

SAMPLE_RATE = 44100
AU_HEADER_SIZE = 24
WAV_HEADER_SIZE = 44
PEAK = 127
V0_PAUSE_CYCLES = 20000
UNSIGNED_OFFSET = 128

_RATIO = SAMPLE_RATE / CYCLES_PER_SECOND
_RADS = 180 / 3.141592654
_MASK32 = 0xFFFFFFFF


@lru_cache(maxsize=256)
def square_wave(length, amp, signed):
    """One square-wave cycle of ``length`` samples, peak first."""
    off = 0 if signed else UNSIGNED_OFFSET
    half = length >> 1
    return bytes(((amp if x < half else -amp) + off) & 0xFF for x in range(length))


@lru_cache(maxsize=256)
def sine_wave(length, amp, signed):
    """One sine-wave cycle of ``length`` samples."""
    if length <= 0:
        return b""
    off = 0 if signed else UNSIGNED_OFFSET
    inc = 360 / length
    return bytes(
        (int(amp * math.sin((x * inc) / _RADS)) + off) & 0xFF for x in range(length)
    )


def _pulse_waves(tap: TapImage, signed: bool, sine: bool) -> Iterator[bytes]:
    wave = sine_wave if sine else square_wave
    data = tap.data
    n = len(data)
    pos = HEADER_SIZE
    while pos < n:
        value = data[pos]
        if value == 0:
            if tap.version == 0:
                yield wave(math.floor(V0_PAUSE_CYCLES * _RATIO), 0, signed)
            elif tap.version == 1:
                raw = bytes(data[pos + 1:pos + 4]).ljust(3, b"\x00")
                cycles = int.from_bytes(raw, "little")
                pos += 3
                yield wave(math.floor(cycles * _RATIO), 0, signed)
        else:
            yield wave(math.floor((value * 8) * _RATIO), PEAK, signed)
        pos += 1


def render_samples(tap, signed, sine=False):
    """Return every audio sample for ``tap`` as bytes."""
    return b"".join(_pulse_waves(tap, signed, sine))


def _write_body(fh: BinaryIO, tap: TapImage, signed: bool, sine: bool) -> int:
    total = 0
    for chunk in _pulse_waves(tap, signed, sine):
        fh.write(chunk)
        total += len(chunk)
    return total


def _au_header(total: int) -> bytes:
    # data offset, data size, 8-bit linear PCM, sample rate, one channel
    return struct.pack(
        ">4sIIIII", b".snd", AU_HEADER_SIZE, total & _MASK32, 2, SAMPLE_RATE, 1
    )


def _wav_header(total: int) -> bytes:
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        (total + WAV_HEADER_SIZE - 8) & _MASK32,
        b"WAVE",
        b"fmt ",
        16,
        1,
        1,
        SAMPLE_RATE,
        SAMPLE_RATE,
        1,
        8,
        b"data",
        total & _MASK32,
    )


def write_au(tap, path: Union[str, Path], sine=False):
    """Write ``tap`` as a Sun AU file; return the number of samples written."""
    with open(path, "wb") as fh:
        fh.write(bytes(AU_HEADER_SIZE))
        total = _write_body(fh, tap, True, sine)
        fh.seek(0)
        fh.write(_au_header(total))
    return total


def write_wav(tap, path: Union[str, Path], sine=False):
    """Write ``tap`` as a WAV file; return the number of samples written."""
    with open(path, "wb") as fh:
        fh.write(bytes(WAV_HEADER_SIZE))
        total = _write_body(fh, tap, False, sine)
        fh.seek(0)
        fh.write(_wav_header(total))
    return total