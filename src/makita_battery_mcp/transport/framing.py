"""Report framing for the USB-HID single-wire bridge.

Frame layout::

    +----------+---------+---------+---------+------------------+----------+---------+
    | HID Size | Preamble|  Size   | Command |     Payload      | Checksum | Padding |
    | 1 byte   | 2 bytes | 2 bytes | 1 byte  |  variable length |  2 bytes | to 64 B |
    +----------+---------+---------+---------+------------------+----------+---------+

- HID Size: number of meaningful bytes that follow (excludes itself)
- Preamble: 0xAA 0x55
- Size: little-endian length of (command byte + payload)
- Checksum: inverted CRC-16 over (command + payload), little-endian
- Padding: zero bytes to fill 64-byte HID report

The bridge answers every request with a frame echoing the command byte.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from ..utils.crc import crc16

PREAMBLE = b"\xAA\x55"
HID_REPORT_SIZE = 64
MAX_PAYLOAD_PER_FRAME = 56  # 64 - 1(hid_size) - 2(preamble) - 2(size) - 1(cmd) - 2(crc)


class BridgeCommand(IntEnum):
    """Bridge firmware opcodes, one per bus primitive."""

    RESET = 0x01
    WRITE_BIT = 0x02
    READ_BIT = 0x03
    WRITE_BYTES = 0x04
    READ_BYTES = 0x05
    SET_POWER = 0x06


@dataclass
class Frame:
    """A parsed bridge frame."""

    command: int
    payload: bytes

    def __repr__(self) -> str:
        return (
            f"Frame(command=0x{self.command:02X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def build_frame(command: int, payload: bytes = b"") -> bytes:
    """Build a 64-byte HID report containing a single bridge frame.

    Raises:
        ValueError: If the payload does not fit in one report.
    """
    if len(payload) > MAX_PAYLOAD_PER_FRAME:
        raise ValueError(
            f"Payload must be at most {MAX_PAYLOAD_PER_FRAME} bytes, got {len(payload)}"
        )
    body = bytes([command]) + payload
    size = len(body).to_bytes(2, "little")
    checksum = crc16(body).to_bytes(2, "little")
    frame = PREAMBLE + size + body + checksum
    return bytes([len(frame)]) + frame + b"\x00" * (HID_REPORT_SIZE - 1 - len(frame))


def parse_frame(data: bytes) -> Frame | None:
    """Parse a 64-byte HID report into a Frame.

    Returns:
        A ``Frame`` if the report contains a valid message, or ``None`` if
        the preamble is missing or the checksum fails.
    """
    if len(data) < 8:
        return None

    if data[0] < 7:
        return None

    if data[1:3] != PREAMBLE:
        return None

    body_size = int.from_bytes(data[3:5], "little")
    if body_size < 1 or 5 + body_size + 2 > len(data):
        return None

    body = data[5 : 5 + body_size]
    expected_checksum = int.from_bytes(data[5 + body_size : 7 + body_size], "little")
    if crc16(body) != expected_checksum:
        return None

    return Frame(command=body[0], payload=bytes(body[1:]))
