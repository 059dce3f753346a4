"""Selector bytes, command payloads and response lengths.

Every request starts with a selector byte after the bus reset. ``READ_ROM``
makes the device return its 8-byte ROM id before accepting the payload;
``SKIP_ROM`` goes straight to the payload. Other selector values are sent
without an address phase.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .checksum import RECORD_LENGTH


class Selector(IntEnum):
    """First byte after a bus reset."""

    READ_ROM = 0x33
    SKIP_ROM = 0xCC
    BL36_VOLTAGES = 0xD4


class ControlCode(IntEnum):
    """Sub-commands of the ``DA`` control command (test mode required)."""

    RESET_ERRORS = 0x04
    LEDS_ON = 0x31
    LEDS_OFF = 0x34


class LegacyCommand(IntEnum):
    """F0513 command bytes."""

    SECOND_TREE = 0x99
    MODEL = 0x31
    CELL_1 = 0x31
    TEMPERATURE = 0x52


@dataclass(frozen=True)
class Request:
    """A framed command: selector, payload and expected response length."""

    selector: int
    payload: bytes
    response_length: int

    def __repr__(self) -> str:
        return (
            f"Request(selector=0x{self.selector:02X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'}, "
            f"response_length={self.response_length})"
        )


# ROM id + 32-byte status record, the same exchange a charger performs
READ_RECORD = Request(Selector.READ_ROM, b"\xF0\x00", RECORD_LENGTH)
READ_MODEL = Request(Selector.SKIP_ROM, b"\xDC\x0C", 10)
READ_DATA_BLOCK = Request(Selector.SKIP_ROM, b"\xD7\x00\x00\xFF", 29)
READ_CELL_TEMPERATURE = Request(Selector.SKIP_ROM, b"\xD7\x0E\x00\x02", 3)
READ_MOSFET_TEMPERATURE = Request(Selector.SKIP_ROM, b"\xD7\x10\x00\x02", 3)
# Byte 1 == 0x06 flags hardware health support; byte 0 is the overdischarge count
READ_HEALTH_CAPABILITY = Request(Selector.SKIP_ROM, b"\xD4\xBA\x00\x01", 2)
READ_OVERLOAD = Request(Selector.SKIP_ROM, b"\xD4\x8D\x00\x07", 8)
READ_HEALTH = Request(Selector.SKIP_ROM, b"\xD4\x50\x01\x02", 3)

ENTER_TEST_MODE = Request(Selector.READ_ROM, b"\xD9\x96\xA5", 29)
EXIT_TEST_MODE = Request(Selector.READ_ROM, b"\xD9\xFF\xFF", 1)

ENTER_BL36_TEST_MODE = Request(Selector.SKIP_ROM, b"\x10\x21", 0)
READ_BL36_VOLTAGES = Request(Selector.BL36_VOLTAGES, b"", 20)

LEGACY_SECOND_TREE = Request(Selector.SKIP_ROM, bytes([LegacyCommand.SECOND_TREE]), 0)
LEGACY_TEMPERATURE = Request(Selector.SKIP_ROM, bytes([LegacyCommand.TEMPERATURE]), 2)

# EEPROM opcodes, sent after a READ_ROM address phase
SCRATCHPAD_WRITE = b"\x0F\x00"
COMMIT = b"\x55\xA5"

HEALTH_CAPABLE_MARKER = 0x06


def build_control(code: ControlCode) -> Request:
    """Build a ``DA`` control command."""
    return Request(Selector.READ_ROM, bytes([0xDA, ControlCode(code)]), 9)


def build_legacy_cell(cell: int) -> Request:
    """Build an F0513 single-cell voltage query.

    Args:
        cell: Cell number 1-5.
    """
    if not 1 <= cell <= 5:
        raise ValueError(f"Cell must be 1-5, got {cell}")
    return Request(Selector.SKIP_ROM, bytes([LegacyCommand.CELL_1 + cell - 1]), 2)


def build_scratchpad_write(record: bytes) -> bytes:
    """Build the scratchpad write payload carrying a full status record."""
    if len(record) != RECORD_LENGTH:
        raise ValueError(
            f"Record must be {RECORD_LENGTH} bytes, got {len(record)}"
        )
    return SCRATCHPAD_WRITE + bytes(record)
