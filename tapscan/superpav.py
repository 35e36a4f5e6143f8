"""Super Pavloda tape format (thresholds T1 and T2): reader, search and description."""

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

SYNC_BYTES = (0x66, 0x1B)
HEADER_BYTES = 7
SUB_BLOCK_SIZE = 256

_SHORT, _MEDIUM, _LONG = 0, 1, 2

# (bits, value) emitted by each pulse class, per reader status.
_TABLES = {
    1: ((1, 1), (2, 0), (2, 1)),
    2: ((1, 0), (1, 1), (2, 0)),
}

_FAILED_READ = (0xFF, 0xFF)


def _in_range(pulse: int, ideal: int, tol: int) -> bool:
    return ideal - tol < pulse < ideal + tol


class SuperPavReader:
    """Stateful Super Pavloda byte reader.

    Pulses carry one or two bits and a medium pulse toggles the decoding
    table, so bits left over from one byte carry into the next read.
    """

    def __init__(self, tap, fmt, tol=DEFAULT_TOLERANCE):
        self.tap: TapImage = tap
        self.fmt: LoaderFormat = fmt
        self.tol = tol
        self.reset()

    def reset(self):
        """Return to status 1 with an empty bit buffer."""
        self.status = 1
        self._bpos = 0
        self._bbuf = 0

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
                return None
            bits, value = _TABLES[self.status][kind]
            if kind == _MEDIUM:
                self.status = 2 if self.status == 1 else 1
            self._bbuf |= (value << (16 - bits)) >> self._bpos
            self._bpos += bits
            pos += 1
            pulses += 1
            if self._bpos >= 8:
                break

        byte = (self._bbuf & 0xFF00) >> 8
        self._bbuf = (self._bbuf << 8) & 0xFF00
        self._bpos -= 8
        return byte, pulses


class SuperPavloda:
    """Finds and decodes Super Pavloda header blocks and sub-blocks."""

    def __init__(self, tap, t1, t2, tol=DEFAULT_TOLERANCE):
        self.tap: TapImage = tap
        self.t1: LoaderFormat = t1
        self.t2: LoaderFormat = t2
        self.tol = tol
        self._load_base = 0
        self._passes = (
            ("T1", t1, BlockKind.SPAV1, BlockKind.SPAV1_HD),
            ("T2", t2, BlockKind.SPAV2, BlockKind.SPAV2_HD),
        )

    @staticmethod
    def _step(reader: SuperPavReader, pos: int) -> tuple[int, int]:
        # A failed read yields $FF and a skip of 255 pulses.
        result = reader.read_byte(pos)
        return result if result is not None else _FAILED_READ

    def search(self, blocks: BlockDatabase) -> list[Block]:
        """Add every Super Pavloda block found to ``blocks`` and return them."""
        tap = self.tap
        n = len(tap)
        found: list[Block] = []

        for label, fmt, data_kind, head_kind in self._passes:
            log.debug("Super Pavloda %s", label)
            reader = SuperPavReader(tap, fmt, self.tol)

            def is_short(pulse: int) -> bool:
                return _in_range(pulse, fmt.short, self.tol)

            i = HEADER_SIZE
            while i < n:
                if is_short(tap[i]) and not tap.is_pause(i):
                    sof = i
                    while True:
                        pulse = tap[i]
                        i += 1
                        if not (i < n and is_short(pulse) and not tap.is_pause(i)):
                            break
                    if _in_range(pulse, fmt.medium, self.tol) and i - sof > 4:
                        reader.reset()
                        value, step = self._step(reader, i)
                        i += step
                        if value == SYNC_BYTES[0]:
                            value, step = self._step(reader, i)
                            i += step
                            if value == SYNC_BYTES[1]:
                                sod = si = i
                                header: list[int] = []
                                for _ in range(2):
                                    value, step = self._step(reader, si)
                                    header.append(value)
                                    si += step
                                sub_block = header[1]
                                if sub_block == 0:
                                    for _ in range(HEADER_BYTES - 2):
                                        value, step = self._step(reader, si)
                                        header.append(value)
                                        si += step
                                    count = SUB_BLOCK_SIZE - header[5]
                                else:
                                    count = SUB_BLOCK_SIZE
                                for _ in range(count + 1):
                                    _, step = self._step(reader, si)
                                    si += step
                                kind = head_kind if sub_block == 0 else data_kind
                                try:
                                    found.append(blocks.add(kind, sof, sod, si, si, 0))
                                except DatabaseFull:
                                    return found
                                i = si
                i += 1
        return found

    def _format_for(self, kind: BlockKind) -> Optional[LoaderFormat]:
        if kind in (BlockKind.SPAV1, BlockKind.SPAV1_HD):
            return self.t1
        if kind in (BlockKind.SPAV2, BlockKind.SPAV2_HD):
            return self.t2
        return None

    def describe(self, block: Block) -> Block:
        """Decode ``block``; header blocks set the load address of following sub-blocks."""
        fmt = self._format_for(block.kind)
        if fmt is None:
            return block
        reader = SuperPavReader(self.tap, fmt, self.tol)
        if block.kind in (BlockKind.SPAV1_HD, BlockKind.SPAV2_HD):
            self._describe_header(block, reader)
        else:
            self._describe_sub_block(block, reader)
        return block

    def _describe_header(self, block: Block, reader: SuperPavReader) -> None:
        si = block.p2
        header: list[int] = []
        for _ in range(HEADER_BYTES):
            value, step = self._step(reader, si)
            header.append(value)
            si += step

        block.cs = (header[2] + (header[3] << 8) + header[5]) & 0xFFFF
        block.cx = SUB_BLOCK_SIZE - header[5]
        block.ce = block.cs + block.cx - 1
        block.xi = header[4] * 256 + (SUB_BLOCK_SIZE - header[5])
        block.pilot_len = block.p2 - block.p1
        block.trail_len = 0
        self._load_base = block.cs + block.cx

        block.info.append(f"Block number: ${header[0]:02X}")
        block.info.append(f"Sub-block number: ${header[1]:02X}")
        block.info.append(f"Load address: ${block.cs:04X}")
        block.info.append(f"Total data size: {block.xi} bytes")
        block.info.append(f"Data in this block: {block.cx} bytes")
        block.info.append(f"Total sub-blocks in chain: {header[4]}")

        expected = (sum(header[:6]) & 0xFF) + 6
        verdict = "OK" if header[6] == expected else "FAILED"
        block.info.append(
            f"Header checkbyte: {verdict} (expected=${expected:02X}, actual=${header[6]:02X})"
        )

        data = bytearray()
        errors = 0
        checksum = 0
        for _ in range(block.cx):
            result = reader.read_byte(si)
            if result is None:
                errors += 1
                result = _FAILED_READ
            value, step = result
            data.append(value)
            si += step
            checksum += value
        checksum += block.cx & 0xFF

        check, _ = self._step(reader, si)
        block.data = bytes(data)
        block.cs_exp = checksum & 0xFF
        block.cs_act = check
        block.rd_err = errors

    def _describe_sub_block(self, block: Block, reader: SuperPavReader) -> None:
        si = block.p2
        header: list[int] = []
        for _ in range(2):
            value, step = self._step(reader, si)
            header.append(value)
            si += step

        block.cs = self._load_base
        block.ce = self._load_base + SUB_BLOCK_SIZE - 1
        block.cx = SUB_BLOCK_SIZE
        block.pilot_len = block.p2 - block.p1
        block.trail_len = 0
        self._load_base += SUB_BLOCK_SIZE

        block.info.append(f"Block number: ${header[0]:02X}")
        block.info.append(f"Sub-block number: ${header[1]:02X}")

        data = bytearray()
        checksum = 0
        for _ in range(block.cx):
            value, step = self._step(reader, si)
            data.append(value)
            si += step
            checksum += value
        checksum += header[0] + header[1] + 2

        check, _ = self._step(reader, si)
        block.data = bytes(data)
        block.cs_exp = checksum & 0xFF
        block.cs_act = check
        block.rd_err = 0