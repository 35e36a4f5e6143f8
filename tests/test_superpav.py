import pytest

from tapscan.superpav import SYNC_BYTES, SuperPavloda, SuperPavReader
from tapscan.tapfile import (
    Block,
    BlockDatabase,
    BlockKind,
    Endian,
    LoaderFormat,
    TapImage,
)

T1 = LoaderFormat("Super Pavloda T1", Endian.MSBF, 0, 0x20, 0x40, 0x60, 0, 0, 0, 0, True)
T2 = LoaderFormat("Super Pavloda T2", Endian.MSBF, 0, 0x90, 0xB0, 0xD0, 0, 0, 0, 0, True)
T1_PULSES = (0x20, 0x40, 0x60)
T2_PULSES = (0x90, 0xB0, 0xD0)


def make_tap(pulses):
    header = b"C64-TAPE-RAW" + bytes([1, 0, 0, 0]) + len(pulses).to_bytes(4, "little")
    return TapImage(header + bytes(pulses))


def encode(data, pulses=T1_PULSES):
    short, medium, long_ = pulses
    bits = [(b >> (7 - k)) & 1 for b in data for k in range(8)]
    out = []
    status = 1
    k = 0
    while k < len(bits):
        if status == 1:
            if bits[k] == 1:
                out.append(short)
                k += 1
            else:
                following = bits[k + 1] if k + 1 < len(bits) else 0
                if following == 0:
                    out.append(medium)
                    status = 2
                else:
                    out.append(long_)
                k += 2
        else:
            if bits[k] == 0:
                out.append(short)
            else:
                out.append(medium)
                status = 1
            k += 1
    return out


def framed(body, pulses=T1_PULSES):
    short, medium, _ = pulses
    return [short] * 10 + [medium] + encode(bytes(SYNC_BYTES), pulses) + encode(bytes(body), pulses)


def header_body(block_no, lo, hi, chain, size_byte, payload, good_header=True):
    hd = [block_no, 0, lo, hi, chain, size_byte]
    check = (sum(hd) & 0xFF) + 6
    hd.append(check if good_header else (check + 1) & 0xFF)
    data_check = (sum(payload) + len(payload)) & 0xFF
    return hd + list(payload) + [data_check], data_check


def sub_body(block_no, sub_no, payload):
    check = (sum(payload) + block_no + sub_no + 2) & 0xFF
    return [block_no, sub_no] + list(payload) + [check], check


PAYLOAD = bytes(range(3, 19))  # 16 bytes, matching size byte 0xF0


def header_tape(pulses=T1_PULSES, good_header=True):
    body, check = header_body(1, 0x00, 0x10, 2, 0xF0, PAYLOAD, good_header)
    tape = framed(body, pulses) + [pulses[2]] * 10
    return make_tap(tape), check


def test_eight_short_pulses_read_all_ones():
    tap = make_tap([0x20] * 8 + [0x60] * 10)
    reader = SuperPavReader(tap, T1, 11)
    assert reader.read_byte(20) == (0xFF, 8)


def test_round_trip_of_every_byte_value():
    data = bytes(range(256))
    pulses = encode(data)
    tap = make_tap(pulses + [0x60] * 10)
    reader = SuperPavReader(tap, T1, 11)
    pos = 20
    decoded = bytearray()
    for _ in data:
        value, used = reader.read_byte(pos)
        decoded.append(value)
        pos += used
    assert bytes(decoded) == data
    assert pos - 20 == len(pulses)


def test_sync_bytes_decode_and_use_all_their_pulses():
    pulses = encode(bytes(SYNC_BYTES))
    tap = make_tap(pulses + [0x60] * 10)
    reader = SuperPavReader(tap, T1, 11)
    first, used1 = reader.read_byte(20)
    second, used2 = reader.read_byte(20 + used1)
    assert (first, second) == SYNC_BYTES
    assert used1 + used2 == len(pulses)


def test_read_outside_bounds_fails():
    tap = make_tap([0x20] * 20)
    reader = SuperPavReader(tap, T1, 11)
    assert reader.read_byte(19) is None
    assert reader.read_byte(len(tap) - 7) is None


def test_read_of_unknown_pulse_fails():
    tap = make_tap([0x20, 0x20, 0x05] + [0x20] * 20)
    reader = SuperPavReader(tap, T1, 11)
    assert reader.read_byte(20) is None


def test_reset_restores_status_one():
    tap = make_tap([0x40] + [0x20] * 20)
    reader = SuperPavReader(tap, T1, 11)
    reader.read_byte(20)
    assert reader.status == 1 or reader.status == 2
    reader.reset()
    assert reader.status == 1
    assert reader.read_byte(21) == (0xFF, 8)


def test_search_finds_header_block():
    tap, _ = header_tape()
    db = BlockDatabase()
    found = SuperPavloda(tap, T1, T2, 11).search(db)
    assert len(found) == 1
    assert len(db) == 1
    block = found[0]
    assert block.kind == BlockKind.SPAV1_HD
    assert block.p1 == 20
    assert block.p2 == 20 + 10 + 1 + len(encode(bytes(SYNC_BYTES)))
    assert block.p3 == block.p4
    assert block.p4 <= len(tap)


def test_describe_header_block():
    tap, check = header_tape()
    db = BlockDatabase()
    scanner = SuperPavloda(tap, T1, T2, 11)
    (block,) = scanner.search(db)
    scanner.describe(block)
    assert block.cs == 0x1000 + 0xF0
    assert block.cx == len(PAYLOAD)
    assert block.ce == block.cs + block.cx - 1
    assert block.xi == 2 * 256 + len(PAYLOAD)
    assert block.data == PAYLOAD
    assert block.cs_exp == check
    assert block.cs_act == check
    assert block.rd_err == 0
    assert block.pilot_len == block.p2 - block.p1
    assert any(line.startswith("Header checkbyte: OK") for line in block.info)


def test_describe_reports_bad_header_checkbyte():
    tap, _ = header_tape(good_header=False)
    scanner = SuperPavloda(tap, T1, T2, 11)
    (block,) = scanner.search(BlockDatabase())
    scanner.describe(block)
    assert any(line.startswith("Header checkbyte: FAILED") for line in block.info)


def test_sub_block_follows_header_load_address():
    head, _ = header_body(1, 0x00, 0x10, 1, 0xF0, PAYLOAD)
    sub_payload = bytes((k * 7) & 0xFF for k in range(256))
    sub, sub_check = sub_body(1, 1, sub_payload)
    tape = framed(head) + [0x60] * 5 + framed(sub) + [0x60] * 10
    tap = make_tap(tape)
    scanner = SuperPavloda(tap, T1, T2, 11)
    found = scanner.search(BlockDatabase())
    assert [b.kind for b in found] == [BlockKind.SPAV1_HD, BlockKind.SPAV1]
    head_block, sub_block = found
    scanner.describe(head_block)
    scanner.describe(sub_block)
    assert sub_block.cs == head_block.cs + head_block.cx
    assert sub_block.cx == 256
    assert sub_block.ce == sub_block.cs + 255
    assert sub_block.data == sub_payload
    assert sub_block.cs_exp == sub_check
    assert sub_block.cs_act == sub_check


def test_second_threshold_is_detected():
    tap, _ = header_tape(T2_PULSES)
    found = SuperPavloda(tap, T1, T2, 11).search(BlockDatabase())
    assert [b.kind for b in found] == [BlockKind.SPAV2_HD]


def test_full_database_stops_search():
    tap, _ = header_tape()
    db = BlockDatabase(capacity=0)
    found = SuperPavloda(tap, T1, T2, 11).search(db)
    assert found == []
    assert len(db) == 0


def test_describe_ignores_other_kinds():
    tap, _ = header_tape()
    block = Block(BlockKind.PAV, 20, 30, 40, 50)
    result = SuperPavloda(tap, T1, T2, 11).describe(block)
    assert result.data is None
    assert result.info == []


@pytest.mark.parametrize("noise", [[0x05] * 40, [0x60] * 40])
def test_no_blocks_in_noise(noise):
    tap = make_tap(noise)
    assert SuperPavloda(tap, T1, T2, 11).search(BlockDatabase()) == []