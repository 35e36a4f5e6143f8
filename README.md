# tapscan

A library for working with Commodore 64 `.tap` tape images. It locates and
decodes blocks written by a handful of turbo loaders, measures pauses, and
renders a tape as an AU or WAV audio file. It has no external dependencies.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Loading a TAP image

```python
from tapscan.tapfile import load_tap, BlockDatabase

tap = load_tap("game.tap")
blocks = BlockDatabase()
```

`TapImage(data)` wraps the raw bytes of an image, header included; it raises
`ValueError` if the data is shorter than the 20-byte header. `load_tap(path)`
reads a file and records its `path`.

- Indexing (`tap[pos]`) returns pulse values and `len(tap)` is the image size.
- `tap.version` is the TAP version from the header; `signature_ok`,
  `version_ok`, `declared_size` and `size_ok` check the header fields.
- `tap.is_pause(pos)` tells whether a position lies inside a pause.
- `tap.add_read_error(pos)` records a decoding failure in `tap.read_errors`.

`BlockDatabase` is an ordered, iterable collection of `Block` objects with a
capacity of 2000 by default. `add(kind, p1, p2, p3, p4, xi)` appends a block
and raises `DatabaseFull` when the capacity is reached. The scanners below
catch `DatabaseFull` and stop searching, returning what they found so far.

A `Block` holds its `kind` (a `BlockKind`), its pulse offsets `p1`..`p4`, and,
once described, the C64 addresses `cs`, `ce` and size `cx`, the decoded
`data`, `rd_err`, `cs_exp`/`cs_act` checksums, `pilot_len`, `trail_len`, a
file name `fn` where the format has one, and notes in `info`.

## Pauses

```python
from tapscan.pause import pause_search, pause_describe

pause_search(tap, blocks)
for block in blocks:
    cycles = pause_describe(tap, block)
```

`pause_search` returns the pause blocks it added. `pause_describe` returns the
pause length in cycles (or `None` for a block that is not a pause) and appends
a line such as `Length: 20000 cycles (0.0203 secs)` to `block.info`.

## Turbo-loader scanners

Each scanner is built from the image, one or more `LoaderFormat` pulse
descriptions and a read tolerance (default 11), and provides
`search(blocks)`, which returns the blocks it added, and `describe(block)`,
which fills in the block's fields and returns it.

- `tapscan.pavloda.Pavloda(tap, fmt, tol)`
- `tapscan.superpav.SuperPavloda(tap, t1, t2, tol)`: both threshold variants;
  a described header block sets the load address of the sub-blocks described
  after it.
- `tapscan.supertape.Supertape(tap, head_fmt, data_fmt, tol)`: header and
  data blocks; a header supplies the address and size of the following data.
- `tapscan.visiload.Visiload(tap, fmt, tol, decode_modifiers)`: chained blocks
  whose format changes from block to block. Found blocks are recorded with
  the kind in its `kind` attribute (`BlockKind.VISI_T2` unless changed).
  Blocks loading to `$03xx` are only decoded when `decode_modifiers` is true.

The low-level readers are available for decoding by hand:
`pav_read_byte(tap, pos, fmt, tol)`, `SuperPavReader`, `SupertapeReader` and
`visiload_read_byte(tap, pos, fmt, endian, extra_bits, tol)`. Read problems
found during a search are reported through the `logging` module.

```python
from tapscan.tapfile import LoaderFormat, Endian
from tapscan.pavloda import Pavloda

pav = LoaderFormat("Pavloda", Endian.MSBF, 0, 0x28, 0, 0x45, 0, 0, 500, 0, True)
scanner = Pavloda(tap, pav)
for block in scanner.search(blocks):
    scanner.describe(block)
```

(The pulse widths above are illustrative; supply the values for the tapes
you are working with.)

## Audio export

```python
from tapscan.audio import write_wav, write_au, render_samples

write_wav(tap, "game.wav", sine=False)
write_au(tap, "game.au", sine=True)
```

Output is 44.1 kHz, 8-bit, mono: unsigned samples for WAV, signed for AU.
Each pulse becomes one cycle of a square or sine wave and pauses become
silence. Both writers return the number of samples written.
`render_samples(tap, signed, sine)` returns the raw sample bytes without
writing a file; `square_wave` and `sine_wave` build single wave cycles.

## What this package does not do

- There is no command-line program; everything is used from Python.
- No table of pulse parameters is included: every scanner needs its
  `LoaderFormat` values passed in.
- `BlockKind` names many tape formats, but scanners exist only for pauses,
  Pavloda, Super Pavloda, Supertape and Visiload. Standard CBM blocks and the
  other turbo loaders are not searched for or decoded.
- It does not identify loaders, write reports, extract program files or
  rewrite TAP images.