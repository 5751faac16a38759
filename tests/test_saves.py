import struct

import pytest

from cogs.asyncrace_saves import SmTotalSram, SmVariaSram, Smz3Sram, Z3rSram, read_save, supports_saves
from cogs.asyncrace_shared import GameTag, MalformedSubmission

IGT_FRAMES = (1 * 3600 + 2 * 60 + 3) * 60


def word_sum(buf, start, end):
    return sum(w for (w,) in struct.iter_unpack("<H", bytes(buf[start:end]))) & 0xFFFF


def z3r_sram(finished=True, rom=b"VT"):
    buf = bytearray(32768)
    struct.pack_into("<H", buf, 0x3E1, 0x55AA)
    buf[0x4F0] = 0xFF
    buf[0x2000:0x2002] = rom
    buf[0x443] = 1 if finished else 0
    struct.pack_into("<I", buf, 0x43E, IGT_FRAMES)
    buf[0x423] = 180
    struct.pack_into("<H", buf, 0x4FE, (0x5A5A - word_sum(buf, 0, 0x4FE)) & 0xFFFF)
    return bytes(buf)


def sm_sram(size, finished=True):
    buf = bytearray(size)
    if finished:
        buf[0x1FE0:0x1FEC] = b"supermetroid"
    struct.pack_into("<I", buf, 0x1400, IGT_FRAMES)
    buf[0x36] = 10  # missiles -> 2
    buf[0x3A] = 5  # supers -> 1
    buf[0x3E] = 5  # power bombs -> 1
    buf[0x32] = 99  # energy -> 1
    struct.pack_into("<H", buf, 0x12, 0b111)
    struct.pack_into("<H", buf, 0x16, 0b11)
    struct.pack_into("<H", buf, 0x00, word_sum(buf, 0x10, 0x65C))
    return bytes(buf)


def test_z3r_sram_reads_time_and_collection():
    save = Z3rSram(z3r_sram())
    assert save.is_finished()
    assert save.duration() == 3723
    assert save.score() == 180


def test_z3r_sram_validation():
    assert Z3rSram(z3r_sram(rom=b"ER")).is_finished()
    assert not Z3rSram(z3r_sram(finished=False)).is_finished()
    with pytest.raises(MalformedSubmission):
        Z3rSram(z3r_sram(rom=b"XX"))
    corrupted = bytearray(z3r_sram())
    corrupted[0x100] ^= 0xFF
    with pytest.raises(MalformedSubmission):
        Z3rSram(bytes(corrupted))
    with pytest.raises(MalformedSubmission):
        Z3rSram(b"\x00" * 100)


def test_smz3_sram_adds_both_games():
    buf = bytearray(32768)
    struct.pack_into("<H", buf, 0x3E1, 0x55AA)
    buf[0x4F0] = 0xFF
    buf[0x3402] = 1
    buf[0x3506] = 1
    struct.pack_into("<I", buf, 0x43E, 1800 * 60)
    struct.pack_into("<I", buf, 0x3A00, 1200 * 60)
    buf[0x423] = 150
    buf[0x3A3A] = 90
    save = Smz3Sram(bytes(buf))
    assert save.is_finished()
    assert save.duration() == 3000
    assert save.score() == 240
    buf[0x3506] = 0
    assert not Smz3Sram(bytes(buf)).is_finished()


@pytest.mark.parametrize("reader,size", [(SmTotalSram, 16384), (SmVariaSram, 8192)])
def test_super_metroid_srams(reader, size):
    save = reader(sm_sram(size))
    assert save.is_finished()
    assert save.duration() == 3723
    assert save.score() == 10
    assert not reader(sm_sram(size, finished=False)).is_finished()
    broken = bytearray(sm_sram(size))
    broken[0x20] = 0x7F
    with pytest.raises(MalformedSubmission):
        reader(bytes(broken))


def test_read_save_dispatch():
    assert supports_saves(GameTag.ALTTPR)
    assert not supports_saves(GameTag.OTHER)
    assert isinstance(read_save(GameTag.SMVARIA, sm_sram(8192)), SmVariaSram)
    with pytest.raises(MalformedSubmission):
        read_save(GameTag.SMVARIA, sm_sram(16384))
    with pytest.raises(MalformedSubmission):
        read_save(GameTag.FF4FE, b"")
