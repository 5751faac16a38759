from __future__ import annotations

import struct
from typing import Dict, Optional, Type

from .asyncrace_shared import GameTag, MalformedSubmission, frames_to_seconds

Z3_SM_SRAM_MARKER = 0x55AA
Z3R_ROM_NAMES = (b"VT", b"ER")


def _u8(data: bytes, offset: int) -> int:
    return data[offset]


def _u16(data: bytes, offset: int) -> int:
    return struct.unpack_from("<H", data, offset)[0]


def _u32(data: bytes, offset: int) -> int:
    return struct.unpack_from("<I", data, offset)[0]


def _word_sum(data: bytes, start: int, end: int) -> int:
    total = 0
    for (word,) in struct.iter_unpack("<H", data[start:end]):
        total = (total + word) & 0xFFFF
    return total


class SaveParser:
    """Reads a finished flag, in-game time and collection from a raw save file."""

    size = 0
    label = "save"

    def __init__(self, data: bytes):
        if len(data) != self.size:
            raise MalformedSubmission(f"Incorrect file size for {self.label} SRAM.")
        self.data = bytes(data)
        self.validate()

    def validate(self) -> None:
        pass

    def is_finished(self) -> bool:
        raise NotImplementedError

    def duration(self) -> int:
        raise NotImplementedError

    def score(self) -> Optional[int]:
        return None


class Z3rSram(SaveParser):
    size = 32768
    label = "ALTTPR"

    def validate(self) -> None:
        data = self.data
        if _u16(data, 0x3E1) != Z3_SM_SRAM_MARKER or data[0x4F0] != 0xFF:
            raise MalformedSubmission("ALTTPR SRAM validation error: invalid file.")
        if data[0x2000:0x2002] not in Z3R_ROM_NAMES:
            raise MalformedSubmission("ALTTPR SRAM validation error: invalid ROM name.")
        expected = (0x5A5A - _word_sum(data, 0x00, 0x4FE)) & 0xFFFF
        if _u16(data, 0x4FE) != expected:
            raise MalformedSubmission("ALTTPR SRAM validation error: invalid checksum.")

    def is_finished(self) -> bool:
        return _u8(self.data, 0x443) == 1

    def duration(self) -> int:
        return frames_to_seconds(_u32(self.data, 0x43E))

    def score(self) -> Optional[int]:
        return _u8(self.data, 0x423)


class Smz3Sram(SaveParser):
    size = 32768
    label = "SMZ3"

    def validate(self) -> None:
        if _u16(self.data, 0x3E1) != Z3_SM_SRAM_MARKER or self.data[0x4F0] != 0xFF:
            raise MalformedSubmission("SMZ3 SRAM validation error: invalid file.")

    def is_finished(self) -> bool:
        return _u8(self.data, 0x3402) == 1 and _u8(self.data, 0x3506) == 1

    def duration(self) -> int:
        # Z3 and SM keep separate clocks
        return frames_to_seconds(_u32(self.data, 0x43E) + _u32(self.data, 0x3A00))

    def score(self) -> Optional[int]:
        return _u8(self.data, 0x423) + _u8(self.data, 0x3A3A)


class SuperMetroidSram(SaveParser):
    label = "SM"

    def validate(self) -> None:
        if _u16(self.data, 0x00) != _word_sum(self.data, 0x10, 0x65C):
            raise MalformedSubmission("SM SRAM has an invalid checksum.")

    def is_finished(self) -> bool:
        return self.data[0x1FE0:0x1FEC] == b"supermetroid"

    def duration(self) -> int:
        return frames_to_seconds(_u32(self.data, 0x1400))

    def score(self) -> Optional[int]:
        data = self.data
        collected = data[0x36] // 5 + data[0x3A] // 5 + data[0x3E] // 5
        collected += (data[0x32] + 1) // 100 + data[0x42] // 100
        collected += bin(_u16(data, 0x12)).count("1")
        collected += bin(_u16(data, 0x16)).count("1")
        return collected


class SmTotalSram(SuperMetroidSram):
    size = 16384
    label = "SM Total"


class SmVariaSram(SuperMetroidSram):
    size = 8192
    label = "SM VARIA"


SAVE_READERS: Dict[GameTag, Type[SaveParser]] = {
    GameTag.ALTTPR: Z3rSram,
    GameTag.SMZ3: Smz3Sram,
    GameTag.SMTOTAL: SmTotalSram,
    GameTag.SMVARIA: SmVariaSram,
}


def supports_saves(game: GameTag) -> bool:
    return game in SAVE_READERS


def read_save(game: GameTag, data: bytes) -> SaveParser:
    reader = SAVE_READERS.get(game)
    if reader is None:
        raise MalformedSubmission(f"{game} does not support save file submissions.")
    return reader(data)
