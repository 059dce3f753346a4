"""ROM id and status record models.

Status record field map (byte offsets)::

    11      chemistry/type code (nibble-swapped)
    16      capacity code
    20      low nybble: error/lock code, high nybble: chk1
    21      chk2 (low), chk3 (high)
    24      overdischarge code (nibble-swapped)
    25      overload code (nibble-swapped)
    26-27   charge cycle counter, 12 bits, nibble-swapped
    31      chk4 (low), chk5 (high)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..errors import ChecksumInvalid
from ..protocol import checksum
from ..protocol.checksum import RECORD_LENGTH, swap_nibbles
from ..utils.crc import crc8

ROM_ID_LENGTH = 8
MAX_CYCLE_COUNT = 0x0FFF

# Error nybble values that do not lock the pack
UNLOCKED_ERROR_CODES = frozenset({0x0, 0x5})

ERROR_LABELS = {
    0x0: "OK",
    0x1: "Overloaded",
    0x5: "Warning",
}


def error_label(code: int) -> str:
    return ERROR_LABELS.get(code, "Error")


@dataclass(frozen=True)
class RomId:
    """The 8-byte device id returned ahead of READ_ROM responses."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != ROM_ID_LENGTH:
            raise ValueError(f"ROM id must be {ROM_ID_LENGTH} bytes, got {len(self.raw)}")

    @property
    def manufacture_date(self) -> tuple[int, int, int]:
        """``(day, month, year)`` encoded in bytes 2, 1 and 0."""
        return self.raw[2], self.raw[1], 2000 + self.raw[0]

    @property
    def date_string(self) -> str:
        day, month, year = self.manufacture_date
        return f"{day}-{month:02d}-{year}"

    @property
    def crc_ok(self) -> bool:
        return crc8(self.raw[:7]) == self.raw[7]

    def hex(self) -> str:
        return self.raw.hex().upper()

    def __repr__(self) -> str:
        return f"RomId({self.hex()})"


@dataclass
class StatusRecord:
    """Mutable view over the 32-byte status record."""

    raw: bytearray = field(default_factory=lambda: bytearray(RECORD_LENGTH))

    def __post_init__(self) -> None:
        self.raw = bytearray(self.raw)
        if len(self.raw) != RECORD_LENGTH:
            raise ValueError(f"Record must be {RECORD_LENGTH} bytes, got {len(self.raw)}")

    @classmethod
    def from_bytes(cls, data: bytes) -> StatusRecord:
        return cls(raw=bytearray(data))

    def to_bytes(self) -> bytes:
        return bytes(self.raw)

    def copy(self) -> StatusRecord:
        return StatusRecord(raw=bytearray(self.raw))

    def hex(self) -> str:
        return self.raw.hex().upper()

    @property
    def error_code(self) -> int:
        return self.raw[checksum.ERROR_BYTE] & 0x0F

    @error_code.setter
    def error_code(self, value: int) -> None:
        if not 0 <= value <= 0x0F:
            raise ValueError(f"Error code must be 0-15, got {value}")
        self.raw[checksum.ERROR_BYTE] = (self.raw[checksum.ERROR_BYTE] & 0xF0) | value

    @property
    def capacity_code(self) -> int:
        return self.raw[16]

    @property
    def battery_type(self) -> int:
        return swap_nibbles(self.raw[11])

    @property
    def overdischarge_code(self) -> int:
        return swap_nibbles(self.raw[24])

    @property
    def overload_code(self) -> int:
        return swap_nibbles(self.raw[25])

    @property
    def cycle_count(self) -> int:
        high = swap_nibbles(self.raw[26])
        low = swap_nibbles(self.raw[27])
        return ((high << 8) | low) & MAX_CYCLE_COUNT

    @cycle_count.setter
    def cycle_count(self, value: int) -> None:
        if not 0 <= value <= MAX_CYCLE_COUNT:
            raise ValueError(f"Cycle count must be 0-{MAX_CYCLE_COUNT}, got {value}")
        self.raw[26] = swap_nibbles((value >> 8) & 0xFF)
        self.raw[27] = swap_nibbles(value & 0xFF)

    @property
    def checksums(self) -> tuple[int, int, int, int, int]:
        return checksum.stored_checksums(self.raw)

    @property
    def is_trusted(self) -> bool:
        """True iff both checksum groups verify."""
        return checksum.verify(self.raw)

    @property
    def is_locked(self) -> bool:
        return self.error_code not in UNLOCKED_ERROR_CODES or not self.is_trusted

    def require_trusted(self) -> None:
        if not self.is_trusted:
            raise ChecksumInvalid("Status record failed checksum verification")

    def recompute_checksums(self) -> StatusRecord:
        checksum.recompute(self.raw)
        return self

    def clear_error(self) -> StatusRecord:
        """Clear the error nybble and recompute every checksum."""
        self.error_code = 0
        return self.recompute_checksums()

    def diff(self, other: StatusRecord) -> list[tuple[int, int, int]]:
        """``(index, self_byte, other_byte)`` for every byte that differs."""
        return [
            (i, old, new)
            for i, (old, new) in enumerate(zip(self.raw, other.raw))
            if old != new
        ]

    def to_dict(self) -> dict:
        return {
            "hex": self.hex(),
            "type": self.battery_type,
            "capacity_code": self.capacity_code,
            "error_code": self.error_code,
            "error": error_label(self.error_code),
            "checksums": [f"{c:X}" for c in self.checksums],
            "checksum_valid": self.is_trusted,
            "overdischarge_code": self.overdischarge_code,
            "overload_code": self.overload_code,
            "cycle_count": self.cycle_count,
            "locked": self.is_locked,
        }
