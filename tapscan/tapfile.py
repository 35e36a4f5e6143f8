"""TAP image container, tape format descriptions and the block database."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, auto
from pathlib import Path
from typing import Iterator, Optional, Union

TAP_SIGNATURE = b"C64-TAPE-RAW"
HEADER_SIZE = 20

DEFAULT_TOLERANCE = 11
"""Default pulse reading tolerance (1 means zero tolerance)."""

NOISE_CUTOFF = 0x0F
"""Pulses at or below this width are treated as noise when rebuilding pauses."""

BLOCK_MAX = 2000
"""Maximum number of blocks the database holds."""

CYCLES_PER_SECOND = 985248
"""6510 cycles per second on a PAL machine."""

NOT_APPLICABLE = -1
VARIABLE = -1
DONT_CARE = 0xFF


class BlockKind(IntEnum):
    """Kinds of entity that can be found on a tape."""

    GAP = auto()
    PAUSE = auto()
    CBM_HEAD = auto()
    CBM_DATA = auto()
    TT_HEAD = auto()
    TT_DATA = auto()
    FREE = auto()
    USGOLD = auto()
    ACES = auto()
    WILD = auto()
    WILD_STOP = auto()
    NOVA = auto()
    NOVA_SPC = auto()
    OCEAN_F1 = auto()
    OCEAN_F2 = auto()
    OCEAN_F3 = auto()
    CHR_T1 = auto()
    CHR_T2 = auto()
    CHR_T3 = auto()
    RASTER = auto()
    CYBER_F1 = auto()
    CYBER_F2 = auto()
    CYBER_F3 = auto()
    CYBER_F4_1 = auto()
    CYBER_F4_2 = auto()
    CYBER_F4_3 = auto()
    BLEEP = auto()
    BLEEP_TRIG = auto()
    BLEEP_SPC = auto()
    HITLOAD = auto()
    MICROLOAD = auto()
    BURNER = auto()
    RACKIT = auto()
    SPAV1_HD = auto()
    SPAV1 = auto()
    SPAV2_HD = auto()
    SPAV2 = auto()
    VIRGIN = auto()
    HITEC = auto()
    ANIROG = auto()
    VISI_T1 = auto()
    VISI_T2 = auto()
    VISI_T3 = auto()
    VISI_T4 = auto()
    SUPERTAPE_HEAD = auto()
    SUPERTAPE_DATA = auto()
    PAV = auto()
    IK = auto()
    FBIRD1 = auto()
    FBIRD2 = auto()
    TURR_HEAD = auto()
    TURR_DATA = auto()
    SEUCK_L2 = auto()
    SEUCK_HEAD = auto()
    SEUCK_DATA = auto()
    SEUCK_TRIG = auto()
    SEUCK_GAME = auto()
    JET = auto()
    FLASH = auto()
    TDI_F1 = auto()
    OCNEW1T1 = auto()
    OCNEW1T2 = auto()
    OCNEW2 = auto()
    ATLAN = auto()
    SNAKE51 = auto()
    SNAKE50T1 = auto()
    SNAKE50T2 = auto()
    PAL_F1 = auto()
    PAL_F2 = auto()
    ENIGMA = auto()
    AUDIOGENIC = auto()


class LoaderId(IntEnum):
    """Identifiers of recognised loader programs."""

    FREE = auto()
    BLEEP = auto()
    CHR = auto()
    BURN = auto()
    WILD = auto()
    USG = auto()
    MIC = auto()
    ACE = auto()
    T250 = auto()
    RACK = auto()
    OCEAN = auto()
    RAST = auto()
    SPAV = auto()
    HIT = auto()
    ANI = auto()
    VIS1 = auto()
    VIS2 = auto()
    VIS3 = auto()
    VIS4 = auto()
    FIRE = auto()
    NOVA = auto()
    IK = auto()
    PAV = auto()
    CYBER = auto()
    VIRG = auto()
    HTEC = auto()
    FLASH = auto()
    SUPER = auto()
    OCNEW1T1 = auto()
    OCNEW1T2 = auto()
    ATLAN = auto()
    SNAKE = auto()
    OCNEW2 = auto()
    AUDIOGENIC = auto()


class Endian(IntEnum):
    """Bit order of bytes on tape."""

    LSBF = 0
    MSBF = 1


@dataclass(frozen=True)
class LoaderFormat:
    """Pulse parameters of one tape format."""

    name: str
    endian: Endian
    threshold: int
    short: int
    medium: int
    long: int
    pilot: int
    sync: int
    pilot_min: int
    pilot_max: int
    has_checksum: bool


@dataclass
class Block:
    """One entity found in a tape image, with what describing it yielded."""

    kind: BlockKind
    p1: int
    p2: int
    p3: int
    p4: int
    xi: int = 0
    cs: int = 0
    ce: int = 0
    cx: int = 0
    data: Optional[bytes] = None
    crc: int = 0
    rd_err: int = 0
    cs_exp: Optional[int] = None
    cs_act: Optional[int] = None
    pilot_len: int = 0
    trail_len: int = 0
    fn: Optional[str] = None
    ok: bool = False
    info: list[str] = field(default_factory=list)


class DatabaseFull(Exception):
    """Raised when a block is added to a database that is already full."""


@dataclass
class BlockDatabase:
    """Ordered collection of the blocks found in a tape image."""

    capacity: int = BLOCK_MAX
    _blocks: list[Block] = field(default_factory=list, repr=False)

    def add(self, kind, p1, p2, p3, p4, xi):
        """Record a new block and return it."""
        if len(self._blocks) >= self.capacity:
            raise DatabaseFull(f"block database holds at most {self.capacity} entries")
        block = Block(BlockKind(kind), p1, p2, p3, p4, xi)
        self._blocks.append(block)
        return block

    def __len__(self):
        return len(self._blocks)

    def __iter__(self) -> Iterator[Block]:
        return iter(self._blocks)


class TapImage:
    """A loaded TAP file: header fields, pulse bytes and read-error log."""

    def __init__(self, data):
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise ValueError(f"TAP image needs a {HEADER_SIZE} byte header")
        self.data = data
        self.version = data[12]
        self.path: Optional[Path] = None
        self.read_errors: list[int] = []
        self._pauses = self._map_pauses()

    def _map_pauses(self) -> bytearray:
        mask = bytearray(len(self.data))
        pos = HEADER_SIZE
        while pos < len(self.data):
            if self.data[pos] == 0:
                span = 4 if self.version >= 1 else 1
                end = min(pos + span, len(self.data))
                mask[pos:end] = b"\x01" * (end - pos)
                pos = end
            else:
                pos += 1
        return mask

    @property
    def signature_ok(self) -> bool:
        return self.data[:12] == TAP_SIGNATURE

    @property
    def version_ok(self) -> bool:
        return self.version in (0, 1)

    @property
    def declared_size(self) -> int:
        return int.from_bytes(self.data[16:20], "little")

    @property
    def size_ok(self) -> bool:
        return self.declared_size == len(self.data) - HEADER_SIZE

    def __len__(self):
        return len(self.data)

    def __getitem__(self, pos):
        return self.data[pos]

    def is_pause(self, pos):
        """True if the byte at ``pos`` belongs to a pause."""
        return 0 <= pos < len(self.data) and bool(self._pauses[pos])

    def add_read_error(self, pos):
        """Record a read error at ``pos``."""
        self.read_errors.append(pos)


def load_tap(path: Union[str, Path]) -> TapImage:
    """Read a TAP file from disk."""
    path = Path(path)
    image = TapImage(path.read_bytes())
    image.path = path
    return image