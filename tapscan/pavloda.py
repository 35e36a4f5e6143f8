"""Pavloda tape format: byte reader, block search and block description."""

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

HEADER_BYTES = 4
MIN_PILOT = 500


def _in_range(pulse: int, ideal: int, tol: int) -> bool:
    return ideal - tol < pulse < ideal + tol


def pav_read_byte(
    tap: TapImage, pos: int, fmt: LoaderFormat, tol: int = DEFAULT_TOLERANCE
) -> Optional[tuple[int, int]]:
    """Read one MSbF byte at ``pos``.

    A 0 bit is one long pulse, a 1 bit is two pulses of which the first is
    short. Returns ``(value, pulses_used)`` or None on a read error.
    """
    bits: list[int] = []
    offset = 0
    n = len(tap)
    while len(bits) < 8:
        at = pos + offset
        if at < HEADER_SIZE or at > n - 1:
            return None
        if tap.is_pause(at):
            tap.add_read_error(at)
            return None
        pulse = tap[at]
        is_short = _in_range(pulse, fmt.short, tol)
        is_long = _in_range(pulse, fmt.long, tol)
        if not (is_short or is_long):
            tap.add_read_error(at)
            return None
        if is_short and is_long:
            bit = 0 if abs(fmt.long - pulse) > abs(fmt.short - pulse) else 1
        else:
            bit = 1 if is_short else 0
        bits.append(bit)
        offset += 2 if bit else 1
    value = 0
    for bit in bits:
        value = (value << 1) | bit
    return value, offset


class Pavloda:
    """Finds and decodes Pavloda blocks in a TAP image."""

    def __init__(self, tap, fmt, tol=DEFAULT_TOLERANCE):
        self.tap = tap
        self.fmt = fmt
        self.tol = tol

    def _read(self, pos: int) -> Optional[tuple[int, int]]:
        return pav_read_byte(self.tap, pos, self.fmt, self.tol)

    def _is_long(self, pos: int) -> bool:
        return pos < len(self.tap) and _in_range(self.tap[pos], self.fmt.long, self.tol)

    def _is_short(self, pos: int) -> bool:
        return pos < len(self.tap) and _in_range(self.tap[pos], self.fmt.short, self.tol)

    def search(self, blocks: BlockDatabase) -> list[Block]:
        """Add every Pavloda block found to ``blocks`` and return them."""
        tap = self.tap
        n = len(tap)
        found: list[Block] = []
        i = HEADER_SIZE
        while i < n - 8:
            if not tap.is_pause(i) and self._is_long(i):
                sof = i
                zeros = 0
                while self._is_long(i):
                    i += 1
                    zeros += 1
                if zeros > MIN_PILOT and self._is_short(i):
                    sod = i + 2  # skip the sync bit (a 1 bit)
                    header: list[int] = []
                    off = 0
                    for _ in range(HEADER_BYTES):
                        byte = self._read(sod + off)
                        if byte is None:
                            log.warning(
                                "read error in Pavloda header ($%04X), search abandoned",
                                sod + off,
                            )
                            return found
                        header.append(byte[0])
                        off += byte[1]
                    start = header[0] | (header[1] << 8)
                    end = header[2] | (header[3] << 8)
                    if end > start:
                        off = 0
                        step = 8
                        for _ in range(end - start + HEADER_BYTES + 1):
                            byte = self._read(sod + off)
                            step = byte[1] if byte is not None else 8
                            off += step
                        off -= step  # back to the first pulse of the checkbyte
                        eod = sod + off
                        eof = eod + step - 1
                        try:
                            found.append(blocks.add(BlockKind.PAV, sof, sod, eod, eof, 0))
                        except DatabaseFull:
                            return found
                        i = eof
            i += 1
        return found

    def describe(self, block: Block) -> Block:
        """Decode ``block``: addresses, data, checksum and read errors."""
        start = block.p2
        off = 0
        header = [0] * HEADER_BYTES
        step = 8
        for idx in range(HEADER_BYTES):
            step = 8
            byte = self._read(start + off)
            if byte is not None:
                header[idx] = byte[0]
                step = byte[1]
            off += step

        block.cs = header[0] | (header[1] << 8)
        block.ce = header[2] | (header[3] << 8)
        block.cx = block.ce - block.cs
        block.pilot_len = block.p2 - block.p1 - 8
        block.trail_len = 0

        data = bytearray(max(block.cx, 0))
        checksum = 0
        errors = 0
        for idx in range(block.cx):
            byte = self._read(start + off)
            if byte is not None:
                value, step = byte
                data[idx] = value
                checksum = (checksum + value + 1) & 0xFF
            else:
                errors += 1
            off += step
        check = self._read(start + off)

        block.data = bytes(data)
        block.cs_exp = checksum
        block.cs_act = check[0] if check is not None else 0xFF
        block.rd_err = errors
        return block