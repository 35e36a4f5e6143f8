import pytest

from tapscan.supertape import Supertape, SupertapeReader
from tapscan.tapfile import (
    Block,
    BlockDatabase,
    BlockKind,
    Endian,
    LoaderFormat,
    TapImage,
)

S, M, L = 0x20, 0x40, 0x60
PILOT_PULSES = (S, L, S, M, S, S)  # decodes as $16 from either status, ends in status 2
PILOTS = 20

HEAD_FMT = LoaderFormat("SUPERTAPE HEAD", Endian.LSBF, 0, S, M, L, 0x16, 0x2A, 50, 0, True)
DATA_FMT = LoaderFormat("SUPERTAPE DATA", Endian.LSBF, 0, S, M, L, 0x16, 0xC5, 50, 0, True)

START = 0xC000
PAYLOAD = b"HELLO SUPERTAPE!"


def encode(payload, status=1):
    bits = [(b >> k) & 1 for b in payload for k in range(8)]
    pulses = []
    idx = 0
    while idx < len(bits):
        bit = bits[idx]
        if bit == 0:
            pulses.append(S)
            idx += 1
        elif status == 2:
            pulses.append(M)
            status = 1
            idx += 1
        elif idx + 1 < len(bits) and bits[idx + 1] == 0:
            pulses.append(M)
            status = 2
            idx += 2
        else:
            pulses.append(L)
            idx += 2
    return pulses


def make_tap(pulses):
    body = bytes(pulses)
    return TapImage(b"C64-TAPE-RAW" + bytes([1, 0, 0, 0]) + len(body).to_bytes(4, "little") + body)


def parity(body):
    return sum(bin(b).count("1") for b in body).to_bytes(2, "little")


def header_payload(name, start, size, check=None):
    body = (
        name.ljust(16, b" ")
        + bytes([0])
        + start.to_bytes(2, "little")
        + size.to_bytes(2, "little")
        + bytes(4)
    )
    return body + (check if check is not None else parity(body))


def block_pulses(sync, payload):
    return list(PILOT_PULSES) * PILOTS + encode(bytes([sync]) + payload, status=2)


def standard_tap(data_check=None):
    head = header_payload(b"GAME", START, len(PAYLOAD))
    data = PAYLOAD + (data_check if data_check is not None else parity(PAYLOAD))
    pulses = block_pulses(0x2A, head) + block_pulses(0xC5, data) + [S] * 150
    return make_tap(pulses)


def scan(tap):
    scanner = Supertape(tap, HEAD_FMT, DATA_FMT)
    db = BlockDatabase()
    found = scanner.search(db)
    for block in found:
        scanner.describe(block)
    return found


def test_reader_round_trip():
    values = bytes([0x16, 0x2A, 0x00, 0xFF, 0x5A, 0x81, 0x7E])
    tap = make_tap(encode(values) + [S] * 40)
    reader = SupertapeReader(tap, HEAD_FMT)
    reader.set_status(1)
    pos = 20
    decoded = []
    for _ in values:
        value, used = reader.read_byte(pos)
        decoded.append(value)
        pos += used
    assert bytes(decoded) == values


def test_reader_bad_pulse_records_error():
    tap = make_tap([0xC0] + [S] * 40)
    reader = SupertapeReader(tap, HEAD_FMT)
    assert reader.read_byte(20) is None
    assert tap.read_errors == [20]


def test_reader_out_of_bounds():
    tap = make_tap([S] * 40)
    reader = SupertapeReader(tap, HEAD_FMT)
    assert reader.read_byte(5) is None
    assert reader.read_byte(len(tap) - 7) is None


def test_long_pulse_forces_status_one():
    tap = make_tap([L] * 40)
    reader = SupertapeReader(tap, HEAD_FMT)
    reader.set_status(2)
    value, _ = reader.read_byte(20)
    assert value == 0xFF
    assert reader.status == 1


def test_clear_keeps_status():
    tap = make_tap([S] * 40)
    reader = SupertapeReader(tap, HEAD_FMT)
    reader.set_status(2)
    reader.clear()
    assert reader.status == 2


def test_set_status_rejects_unknown():
    tap = make_tap([S] * 40)
    reader = SupertapeReader(tap, HEAD_FMT)
    with pytest.raises(ValueError):
        reader.set_status(3)


def test_search_finds_header_then_data():
    found = scan(standard_tap())
    assert [b.kind for b in found] == [BlockKind.SUPERTAPE_HEAD, BlockKind.SUPERTAPE_DATA]
    head, data = found
    assert head.p1 == 20
    assert head.p1 < head.p2 <= head.p3 <= head.p4 <= data.p1
    assert data.p2 <= data.p3 <= data.p4


def test_header_describe():
    head = scan(standard_tap())[0]
    assert head.fn == "GAME"
    assert head.cs == 0x033C
    assert head.cx == 25
    assert head.ce == head.cs + head.cx - 1
    assert head.data == header_payload(b"GAME", START, len(PAYLOAD))[:25]
    assert head.cs_exp == head.cs_act
    assert head.pilot_len == PILOTS
    assert "DATA Load address: $C000" in head.info


def test_data_describe_uses_header():
    data = scan(standard_tap())[1]
    assert data.cs == START
    assert data.cx == len(PAYLOAD)
    assert data.ce == START + len(PAYLOAD)
    assert data.data == PAYLOAD
    assert data.cs_exp == data.cs_act


def test_bad_parity_is_reported():
    data = scan(standard_tap(data_check=(0x1234).to_bytes(2, "little")))[1]
    assert data.cs_act == 0x1234
    assert data.cs_exp == int.from_bytes(parity(PAYLOAD), "little")


def test_search_stops_when_database_full():
    scanner = Supertape(standard_tap(), HEAD_FMT, DATA_FMT)
    db = BlockDatabase(capacity=1)
    found = scanner.search(db)
    assert [b.kind for b in found] == [BlockKind.SUPERTAPE_HEAD]
    assert len(db) == 1


def test_no_pilot_finds_nothing():
    tap = make_tap([S] * 300)
    scanner = Supertape(tap, HEAD_FMT, DATA_FMT)
    db = BlockDatabase()
    assert scanner.search(db) == []
    assert len(db) == 0


def test_describe_ignores_other_kinds():
    scanner = Supertape(standard_tap(), HEAD_FMT, DATA_FMT)
    block = Block(BlockKind.PAUSE, 20, 0, 0, 23)
    result = scanner.describe(block)
    assert result.data is None
    assert result.cx == 0