"""Supertape tape format: stateful byte reader, block search and block description."""

from __future__ import annotations

import logging
from typing import Optional

from .tapfile import (
    DEFAULT_TOLERANCE,
    HEADER_SIZE,
    Block,
    BlockDatabase,
    BlockKind,
    DatabaseFull,
    LoaderFormat,
    TapImage,
)

log = logging.getLogger(__name__)

HEADER_BYTES = 27
"""Header block size on tape, including the two parity checkbytes."""

HEADER_LOAD_ADDRESS = 0x033C
PILOT_BYTE = 0x16
MIN_PILOTS = 10
SEARCH_MARGIN = 100

_SHORT, _MEDIUM, _LONG = 0, 1, 2

# (bits, value) emitted by each pulse class, per reader status; bits go in LSbF.
_TABLES = {
    1: ((1, 0), (2, 1), (2, 3)),
    2: ((1, 0), (1, 1), (2, 3)),
}

# A failed read is taken as byte $FF with a skip of 255 pulses.
_FAILED_READ = (0xFF, 0xFF)


def _in_range(pulse: int, ideal: int, tol: int) -> bool:
    return ideal - tol < pulse < ideal + tol


def _petscii_name(raw: bytes) -> str:
    raw = raw.split(b"\x00", 1)[0]
    chars = []
    for value in raw:
        if value == 0xA0:
            chars.append(" ")
        elif 0x20 <= value < 0x7F:
            chars.append(chr(value))
        else:
            chars.append("?")
    return "".join(chars).strip()


class SupertapeReader:
    """Stateful Supertape byte reader.

    A short pulse is a 0 bit, a medium pulse is "10" in status 1 or "1" in
    status 2 and toggles the status, a long pulse is "11" and forces status 1.
    Bits left over from one byte carry into the next read.
    """

    def __init__(self, tap, fmt, tol=DEFAULT_TOLERANCE):
        self.tap: TapImage = tap
        self.fmt: LoaderFormat = fmt
        self.tol = tol
        self.status = 1
        self._bpos = 0
        self._bbuf = 0

    def clear(self):
        """Empty the bit buffer, leaving the status as it is."""
        self._bpos = 0
        self._bbuf = 0

    def set_status(self, status):
        """Force the status (1 or 2) and empty the bit buffer."""
        if status not in (1, 2):
            raise ValueError(f"Supertape reader status must be 1 or 2, not {status!r}")
        self.status = status
        self.clear()

    def _classify(self, pulse: int) -> Optional[int]:
        kind = None
        if _in_range(pulse, self.fmt.short, self.tol):
            kind = _SHORT
        if _in_range(pulse, self.fmt.medium, self.tol):
            kind = _MEDIUM
        if _in_range(pulse, self.fmt.long, self.tol):
            kind = _LONG
        return kind

    def read_byte(self, pos):
        """Read one byte at ``pos``.

        Returns ``(value, pulses_used)`` or None on a read error.
        """
        tap = self.tap
        n = len(tap)
        if pos > n - 8 or pos < HEADER_SIZE:
            return None
        if tap.is_pause(pos):
            return None

        pulses = 0
        while True:
            kind = self._classify(tap[pos]) if pos < n else None
            if kind is None:
                tap.add_read_error(pos)
                return None
            bits, value = _TABLES[self.status][kind]
            if kind == _MEDIUM:
                self.status = 2 if self.status == 1 else 1
            elif kind == _LONG:
                self.status = 1
            self._bbuf |= value << self._bpos
            self._bpos += bits
            pos += 1
            pulses += 1
            if self._bpos >= 8:
                break

        byte = self._bbuf & 0xFF
        self._bbuf >>= 8
        self._bpos -= 8
        return byte, pulses


class Supertape:
    """Finds and decodes Supertape header and data blocks.

    A header block records the load address and size of the data block that
    follows it; that information is kept here between calls.
    """

    def __init__(self, tap, head_fmt, data_fmt, tol=DEFAULT_TOLERANCE):
        self.tap: TapImage = tap
        self.head_fmt: LoaderFormat = head_fmt
        self.data_fmt: LoaderFormat = data_fmt
        self.tol = tol
        self._reader = SupertapeReader(tap, head_fmt, tol)
        self._data_start = 0
        self._data_size = 0
        self._data_end = 0

    def _step(self, pos: int) -> tuple[int, int]:
        result = self._reader.read_byte(pos)
        return result if result is not None else _FAILED_READ

    def _skip_to(self, start: int, stop: int) -> int:
        """Read from ``start`` in a fresh state until ``stop`` is reached."""
        self._reader.set_status(1)
        pos = start
        while True:
            _, step = self._step(pos)
            pos += step
            if pos >= stop:
                return pos

    def search(self, blocks: BlockDatabase) -> list[Block]:
        """Add every Supertape block found to ``blocks`` and return them."""
        tap = self.tap
        n = len(tap)
        reader = self._reader
        pilot = self.head_fmt.pilot
        found: list[Block] = []

        i = HEADER_SIZE
        while i < n - SEARCH_MARGIN:
            reader.set_status(1)
            value, _ = self._step(i)
            if value == pilot:
                sof = i
                pilots = 0
                while True:
                    pilots += 1
                    value, step = self._step(i)
                    i += step
                    if value != pilot:
                        break

                if pilots >= MIN_PILOTS:
                    sync = value & 0xEF
                    if sync == self.head_fmt.sync:
                        sod = i
                        eod = i
                        for j in range(HEADER_BYTES):
                            if j == HEADER_BYTES - 2:
                                eod = i
                            _, step = self._step(i)
                            i += step
                        eof = i
                        try:
                            found.append(
                                blocks.add(BlockKind.SUPERTAPE_HEAD, sof, sod, eod, eof, 0)
                            )
                        except DatabaseFull:
                            return found

                        s = self._skip_to(sof, sod)
                        header = []
                        for _ in range(HEADER_BYTES):
                            value_h, step = self._step(s)
                            header.append(value_h)
                            s += step
                        self._data_size = header[19] | (header[20] << 8)

                    if sync == self.data_fmt.sync:
                        sod = i
                        s = sod
                        eod = s
                        for j in range(self._data_size + 2):
                            if j == self._data_size:
                                eod = s
                            _, step = self._step(s)
                            s += step
                        eof = s
                        try:
                            found.append(
                                blocks.add(BlockKind.SUPERTAPE_DATA, sof, sod, eod, eof, 0)
                            )
                        except DatabaseFull:
                            return found
                        self._data_size = 0
            i += 1
        return found

    def describe(self, block: Block) -> Block:
        """Decode ``block``: addresses, name, data and parity checksum."""
        if block.kind not in (BlockKind.SUPERTAPE_HEAD, BlockKind.SUPERTAPE_DATA):
            return block

        s = self._skip_to(block.p1, block.p2)

        if block.kind == BlockKind.SUPERTAPE_HEAD:
            s = block.p2
            block.cs = HEADER_LOAD_ADDRESS
            block.cx = HEADER_BYTES - 2
            block.ce = block.cs + block.cx - 1

            header = []
            for _ in range(block.cx):
                value, step = self._step(s)
                header.append(value)
                s += step

            block.fn = _petscii_name(bytes(header[:16]))
            self._data_start = header[17] | (header[18] << 8)
            self._data_size = header[19] | (header[20] << 8)
            self._data_end = self._data_start + self._data_size

            block.info.append(f"DATA Load address: ${self._data_start:04X}")
            block.info.append(f"DATA File size: {self._data_size} bytes")
            block.info.append(f"DATA End address (calculated): ${self._data_end:04X}")
        else:
            block.cs = self._data_start
            block.ce = self._data_end
            block.cx = self._data_size

        self._reader.set_status(1)
        s = block.p1
        count = 0
        while True:
            value, step = self._step(s)
            s += step
            count += 1
            if value != PILOT_BYTE:
                break
        block.pilot_len = count - 1
        block.trail_len = 0

        data = bytearray()
        parity = 0
        for _ in range(block.cx):
            value, step = self._step(s)
            data.append(value)
            s += step
            parity += bin(value).count("1")

        low, step = self._step(s)
        s += step
        high, _ = self._step(s)

        block.data = bytes(data)
        block.cs_exp = parity & 0xFFFF
        block.cs_act = low | (high << 8)
        return block