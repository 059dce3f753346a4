"""Tests for the Dallas/Maxim CRC helpers."""

from makita_battery_mcp.utils.crc import crc8, crc16


def test_crc16_empty():
    """CRC of empty data should be the inverted initial value."""
    assert crc16(b"") == 0xFFFF


def test_crc16_check_value():
    """Standard check value for CRC-16/MAXIM."""
    assert crc16(b"123456789") == 0x44C2


def test_crc16_different_inputs():
    assert crc16(b"\x01") != crc16(b"\x02")


def test_crc8_rom_example():
    """The worked ROM example from the Maxim 1-Wire application note."""
    assert crc8(bytes([0x02, 0x1C, 0xB8, 0x01, 0x00, 0x00, 0x00])) == 0xA2


def test_crc8_appending_crc_gives_zero():
    data = bytes([0x02, 0x1C, 0xB8, 0x01, 0x00, 0x00, 0x00])
    assert crc8(data + bytes([crc8(data)])) == 0
