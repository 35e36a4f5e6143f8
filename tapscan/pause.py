"""Locating and describing pauses in a TAP image."""

from __future__ import annotations

from typing import Optional

from .tapfile import (
    CYCLES_PER_SECOND,
    HEADER_SIZE,
    Block,
    BlockDatabase,
    BlockKind,
    DatabaseFull,
    TapImage,
)

V0_PAUSE_CYCLES = 20000
"""Cycles represented by each zero byte in a version 0 image."""


def pause_search(tap: TapImage, blocks: BlockDatabase) -> list[Block]:
    """Add every pause in ``tap`` to ``blocks``; stop quietly when the database fills."""
    found: list[Block] = []
    n = len(tap)
    pos = HEADER_SIZE
    while pos < n:
        if tap[pos] == 0:
            if tap.version == 1:
                start, end = pos, pos + 3
                pos += 3
            elif tap.version == 0:
                start = pos
                while pos < n and tap[pos] == 0:
                    pos += 1
                end = pos - 1
            else:
                pos += 1
                continue
            try:
                found.append(blocks.add(BlockKind.PAUSE, start, 0, 0, end, 0))
            except DatabaseFull:
                break
        pos += 1
    return found


def _v0_length(tap: TapImage, start: int) -> int:
    n = len(tap)
    pos = start
    count = 0
    while pos < n:
        value = tap[pos]
        pos += 1
        if value != 0 or pos >= n:
            break
        count += 1
    return count * V0_PAUSE_CYCLES


def _v1_length(tap: TapImage, start: int) -> int:
    raw = bytes(tap[start + 1:start + 4]).ljust(3, b"\x00")
    return int.from_bytes(raw, "little")


def pause_describe(tap: TapImage, block: Block) -> Optional[int]:
    """Measure a pause block in cycles and note its length in ``block.info``.

    Returns None for blocks that are not pauses.
    """
    if block.kind != BlockKind.PAUSE:
        return None
    if tap.version == 0:
        cycles = _v0_length(tap, block.p1)
    elif tap.version == 1:
        cycles = _v1_length(tap, block.p1)
    else:
        raise ValueError(f"unsupported TAP version {tap.version}")
    seconds = cycles / CYCLES_PER_SECOND
    block.info.append(f"Length: {cycles} cycles ({seconds:.4f} secs)")
    return cycles