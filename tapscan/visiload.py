"""Visiload tape format: byte reader, chained block search and block description.

Only the first block of a Visiload chain can be found on its own; the way each
following block is formatted (bit order, extra bits per byte, extra header
bytes, whether a pilot tone precedes it) is set by data in the block before.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Optional

from .tapfile import (
    DEFAULT_TOLERANCE,
    HEADER_SIZE,
    Block,
    BlockDatabase,
    BlockKind,
    DatabaseFull,
    Endian,
    LoaderFormat,
    TapImage,
)

log = logging.getLogger(__name__)

HEADER_BYTES = 4
"""Header size without extra header bytes: end address then start address, MSB first."""

SEARCH_MARGIN = 100
MAX_FORMAT_FIELD = 7

MOD_BITS_PER_BYTE = 0x034B
MOD_EXTRA_HEADER = 0x03A4
MOD_ENDIAN = 0x0347
MOD_PILOT = 0x03BB
MSBF_MARKER = 0x26

_MODIFIER_NOTES = {
    MOD_BITS_PER_BYTE: "MODIFIER : first data byte holds no. of bits per byte in next block.",
    MOD_EXTRA_HEADER: "MODIFIER : first data byte is number of additional header bytes+3 in next.",
    MOD_ENDIAN: "MODIFIER : if first data byte is $26 then next block will be MSbF else LSbF.",
    MOD_PILOT: "MODIFIER : next block (only) will have PILOT tone before it + possibly a pause.",
}
_SAME_FORMAT_NOTE = "Next block will be formatted same as this one."
_SHOW_FIRST_BYTE = (MOD_BITS_PER_BYTE, MOD_EXTRA_HEADER, MOD_ENDIAN)

_VISI_KINDS = frozenset(
    {BlockKind.VISI_T1, BlockKind.VISI_T2, BlockKind.VISI_T3, BlockKind.VISI_T4}
)

_FAILED_READ = 0xFF


def _in_range(pulse: int, ideal: int, tol: int) -> bool:
    return ideal - tol < pulse < ideal + tol


def visiload_read_byte(
    tap: TapImage,
    pos: int,
    fmt: LoaderFormat,
    endian: Endian = Endian.MSBF,
    extra_bits: int = 1,
    tol: int = DEFAULT_TOLERANCE,
) -> Optional[int]:
    """Read one Visiload byte at ``pos``.

    ``extra_bits`` long pulses (1 bits) must come before the eight data bits.
    A long pulse is a 1 bit and a short pulse a 0 bit. Returns the byte value
    or None on a read error.
    """
    n = len(tap)
    for at in range(pos, pos + 8 + extra_bits):
        if at < HEADER_SIZE or at > n - 1 or tap.is_pause(at):
            return None

    for k in range(extra_bits):
        pulse = tap[pos + k]
        if not fmt.long - tol <= pulse <= fmt.long + tol:
            tap.add_read_error(pos + k)
            return None

    value = 0
    for k in range(8):
        pulse = tap[pos + extra_bits + k]
        one = _in_range(pulse, fmt.long, tol)
        zero = _in_range(pulse, fmt.short, tol)
        if one == zero:  # neither, or ambiguous
            tap.add_read_error(pos + k)
            return None
        if one:
            value |= (0x80 >> k) if endian == Endian.MSBF else (1 << k)
    return value


class _Layout(NamedTuple):
    endian: Endian
    extra_header: int
    extra_bits: int

    @property
    def width(self) -> int:
        return 8 + self.extra_bits

    @property
    def attribute(self) -> int:
        # bit 7: endianness, bits 3-5: extra header bytes, bits 0-2: extra bits
        return (int(self.endian) << 7) | (self.extra_header << 3) | self.extra_bits

    @classmethod
    def from_attribute(cls, att: int) -> "_Layout":
        return cls(Endian((att >> 7) & 1), (att >> 3) & 7, att & 7)


class Visiload:
    """Finds and decodes Visiload block chains.

    ``kind`` is the block kind recorded for found blocks; it names the
    threshold variant that ``fmt`` describes.
    """

    def __init__(self, tap, fmt, tol=DEFAULT_TOLERANCE, decode_modifiers=False):
        self.tap: TapImage = tap
        self.fmt: LoaderFormat = fmt
        self.tol = tol
        self.decode_modifiers = decode_modifiers
        self.kind: BlockKind = BlockKind.VISI_T2

    def _read(self, pos: int, layout: _Layout) -> Optional[int]:
        return visiload_read_byte(
            self.tap, pos, self.fmt, layout.endian, layout.extra_bits, self.tol
        )

    def _locate_pilot(
        self, j: int, layout: _Layout, limit: int
    ) -> Optional[tuple[int, int]]:
        """Find a pilot tone and sync from ``j``; return (start of pilot, start of data)."""
        fmt = self.fmt
        w = layout.width
        while True:
            value = self._read(j, layout)
            j += 1
            if value == fmt.pilot or j >= limit:
                break
        j -= 1
        sof = j
        while True:
            value = self._read(j, layout)
            j += w
            if value != fmt.pilot or j >= limit:
                break
        j -= w
        if self._read(j, layout) != fmt.sync:
            log.warning("Visiload sync byte failed @ %04X, search aborted", j)
            return None
        return sof, j + w

    def _read_header(self, sod: int, layout: _Layout) -> Optional[list[int]]:
        """Read the header plus the first data byte, or None on a read error."""
        w = layout.width
        header: list[int] = []
        for k in range(HEADER_BYTES + layout.extra_header + 1):
            value = self._read(sod + k * w, layout)
            if value is None:
                log.warning(
                    "read error in Visiload header ($%04X), search abandoned; "
                    "header begins at $%04X and should hold %d bytes",
                    sod + k * w,
                    sod,
                    HEADER_BYTES + layout.extra_header,
                )
                return None
            header.append(value)
        return header

    def search(self, blocks: BlockDatabase) -> list[Block]:
        """Add every Visiload block found to ``blocks`` and return them."""
        tap = self.tap
        fmt = self.fmt
        limit = len(tap) - SEARCH_MARGIN
        found: list[Block] = []
        layout = _Layout(Endian.MSBF, 0, 1)

        i = HEADER_SIZE
        while i < limit:
            if self._read(i, layout) == fmt.pilot:
                w = layout.width
                pilots = 0
                while self._read(i + pilots * w, layout) == fmt.pilot:
                    pilots += 1
                if self._read(i + pilots * w, layout) == fmt.sync and pilots > fmt.pilot_min:
                    sof = i
                    sod = i + (pilots + 1) * w
                    j = sod
                    need_pilot = False
                    while True:
                        if need_pilot:
                            located = self._locate_pilot(j, layout, limit)
                            if located is None:
                                return found
                            sof, sod = located
                            need_pilot = False

                        header = self._read_header(sod, layout)
                        if header is None:
                            return found

                        ah = layout.extra_header
                        w = layout.width
                        start = (header[2 + ah] << 8) | header[3 + ah]
                        end = (header[ah] << 8) | header[1 + ah]
                        length = end - start
                        if length == 0:
                            length = 1  # one byte is still sent
                        if length < 0:
                            log.warning(
                                "Visiload block at $%04X ends before it starts, search abandoned",
                                sod,
                            )
                            return found
                        first_data = header[HEADER_BYTES + ah]

                        eod = sod + (length + HEADER_BYTES + ah - 1) * w
                        eof = eod + w - 1
                        try:
                            found.append(
                                blocks.add(self.kind, sof, sod, eod, eof, layout.attribute)
                            )
                        except DatabaseFull:
                            return found

                        j = eof + 1
                        i = j
                        sof = sod = j

                        endian, extra_header, extra_bits = layout
                        if start == MOD_BITS_PER_BYTE:
                            extra_bits = first_data - 8
                        if start == MOD_EXTRA_HEADER:
                            extra_header = first_data - 3
                        if start == MOD_ENDIAN:
                            endian = Endian.MSBF if first_data == MSBF_MARKER else Endian.LSBF
                        if start == MOD_PILOT:
                            need_pilot = True
                        if not (
                            0 <= extra_bits <= MAX_FORMAT_FIELD
                            and 0 <= extra_header <= MAX_FORMAT_FIELD
                        ):
                            log.warning(
                                "Visiload modifier at $%04X gives an unusable format, "
                                "search abandoned",
                                sod,
                            )
                            return found
                        layout = _Layout(endian, extra_header, extra_bits)

                        if j >= limit:
                            break
            i += 1
        return found

    def describe(self, block: Block) -> Block:
        """Decode ``block``: addresses, format notes and (optionally for modifiers) data."""
        if block.kind not in _VISI_KINDS:
            return block

        layout = _Layout.from_attribute(block.xi)
        w = layout.width
        ah = layout.extra_header

        header = []
        for k in range(ah, HEADER_BYTES + ah + 1):
            value = self._read(block.p2 + k * w, layout)
            header.append(_FAILED_READ if value is None else value)

        block.cs = (header[2] << 8) | header[3]
        block.ce = ((header[0] << 8) | header[1]) - 1
        block.cx = (block.ce - block.cs + 1) & 0xFFFF

        block.info.append(_MODIFIER_NOTES.get(block.cs, _SAME_FORMAT_NOTE))
        if block.cs in _SHOW_FIRST_BYTE:
            block.info.append(f"First byte ${header[4]:02X}")
        endian_name = "MSbF" if layout.endian == Endian.MSBF else "LSbF"
        block.info.append(
            f"Bits per byte: {w} | Endianess: {endian_name} | Extra headers bytes: {ah}"
        )

        pilot_len = (block.p2 - block.p1) // w
        if pilot_len > 0:
            pilot_len -= 1  # the sync byte is not pilot
        block.pilot_len = pilot_len
        block.trail_len = 0

        if not self.decode_modifiers and (block.cs & 0xFF00) == 0x0300:
            return block

        start = block.p2 + (ah + HEADER_BYTES) * w
        data = bytearray()
        errors = 0
        for k in range(block.cx):
            value = self._read(start + k * w, layout)
            if value is None:
                errors += 1
                value = _FAILED_READ
            data.append(value)
        block.data = bytes(data)
        block.rd_err = errors
        return block