"""Dallas/Maxim CRC helpers used on the single-wire bus and the USB bridge.

- ``crc8``: the 1-Wire ROM CRC (polynomial x^8 + x^5 + x^4 + 1, reflected 0x8C).
- ``crc16``: the 1-Wire CRC-16 (reflected 0xA001, init 0, output inverted).
"""

from __future__ import annotations


def _build_table(poly: int, width: int) -> list[int]:
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            crc = (crc >> 1) ^ poly if crc & 1 else crc >> 1
        table.append(crc & ((1 << width) - 1))
    return table


_CRC8_TABLE = _build_table(0x8C, 8)
_CRC16_TABLE = _build_table(0xA001, 16)


def crc8(data: bytes, crc: int = 0) -> int:
    """Compute the Dallas/Maxim CRC-8 of ``data``."""
    for byte in data:
        crc = _CRC8_TABLE[(crc ^ byte) & 0xFF]
    return crc


def crc16(data: bytes, crc: int = 0) -> int:
    """Compute the inverted Dallas/Maxim CRC-16 of ``data``."""
    for byte in data:
        crc = (crc >> 8) ^ _CRC16_TABLE[(crc ^ byte) & 0xFF]
    return ~crc & 0xFFFF
