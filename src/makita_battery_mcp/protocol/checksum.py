"""Nybble checksums protecting the 32-byte status record.

The record carries five checksum nybbles, each ``min(sum, 0xFF) & 0x0F`` over
the nybbles of a byte range:

    Primary group (decides the lock state):
      chk1  bytes 0-7                       -> byte 20 high nybble
      chk2  bytes 8-15                      -> byte 21 low nybble
      chk3  bytes 16-19 + byte 20 low nybble -> byte 21 high nybble

    Secondary group (cycle count and wear fields):
      chk4  bytes 22-23                     -> byte 31 low nybble
      chk5  bytes 24-30                     -> byte 31 high nybble

A record whose bytes 20 and 21 are both 0xFF is the bus sentinel, never a
valid record.
"""

from __future__ import annotations

RECORD_LENGTH = 32
ERROR_BYTE = 20
CHECKSUM_BYTE = 21
SECONDARY_CHECKSUM_BYTE = 31


def swap_nibbles(value: int) -> int:
    """Exchange the high and low nybble of a byte."""
    return ((value & 0x0F) << 4) | ((value & 0xF0) >> 4)


def nybble_checksum(data: bytes, trailing_low_nybble: int | None = None) -> int:
    """Checksum nybble over every nybble of ``data``.

    Args:
        data: Bytes whose high and low nybbles are summed.
        trailing_low_nybble: Optional byte whose low nybble alone is added.
    """
    total = sum((b & 0x0F) + (b >> 4) for b in data)
    if trailing_low_nybble is not None:
        total += trailing_low_nybble & 0x0F
    return min(total, 0xFF) & 0x0F


def compute_checksums(record: bytes) -> tuple[int, int, int, int, int]:
    """Return ``(chk1, chk2, chk3, chk4, chk5)`` for the current field values."""
    _check_length(record)
    return (
        nybble_checksum(record[0:8]),
        nybble_checksum(record[8:16]),
        nybble_checksum(record[16:20], trailing_low_nybble=record[20]),
        nybble_checksum(record[22:24]),
        nybble_checksum(record[24:31]),
    )


def stored_checksums(record: bytes) -> tuple[int, int, int, int, int]:
    """Return the five checksum nybbles as stored in the record."""
    _check_length(record)
    return (
        record[20] >> 4,
        record[CHECKSUM_BYTE] & 0x0F,
        record[CHECKSUM_BYTE] >> 4,
        record[SECONDARY_CHECKSUM_BYTE] & 0x0F,
        record[SECONDARY_CHECKSUM_BYTE] >> 4,
    )


def is_sentinel(record: bytes) -> bool:
    return record[ERROR_BYTE] == 0xFF and record[CHECKSUM_BYTE] == 0xFF


def verify(record: bytes) -> bool:
    """True iff both checksum groups match a recomputation."""
    _check_length(record)
    if is_sentinel(record):
        return False
    return compute_checksums(record) == stored_checksums(record)


def recompute(record: bytearray) -> bytearray:
    """Overwrite the checksum nybbles in place and return the record."""
    chk1, chk2, chk3, chk4, chk5 = compute_checksums(record)
    record[20] = (record[20] & 0x0F) | (chk1 << 4)
    record[CHECKSUM_BYTE] = chk2 | (chk3 << 4)
    record[SECONDARY_CHECKSUM_BYTE] = chk4 | (chk5 << 4)
    return record


def _check_length(record: bytes) -> None:
    if len(record) != RECORD_LENGTH:
        raise ValueError(f"Record must be {RECORD_LENGTH} bytes, got {len(record)}")
