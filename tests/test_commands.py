"""Tests for selector bytes and command builders."""

import pytest

from makita_battery_mcp.protocol import commands
from makita_battery_mcp.protocol.commands import (
    ControlCode,
    Request,
    Selector,
    build_control,
    build_legacy_cell,
    build_scratchpad_write,
)


def test_selector_values():
    assert Selector.READ_ROM == 0x33
    assert Selector.SKIP_ROM == 0xCC
    assert Selector.BL36_VOLTAGES == 0xD4


def test_read_record_is_charger_exchange():
    assert commands.READ_RECORD == Request(0x33, b"\xF0\x00", 32)


def test_test_mode_commands():
    assert commands.ENTER_TEST_MODE.payload == b"\xD9\x96\xA5"
    assert commands.EXIT_TEST_MODE.payload == b"\xD9\xFF\xFF"
    assert commands.ENTER_TEST_MODE.selector == Selector.READ_ROM


def test_temperature_queries_use_skip_rom():
    assert commands.READ_CELL_TEMPERATURE == Request(0xCC, b"\xD7\x0E\x00\x02", 3)
    assert commands.READ_MOSFET_TEMPERATURE == Request(0xCC, b"\xD7\x10\x00\x02", 3)


def test_build_control():
    request = build_control(ControlCode.RESET_ERRORS)
    assert request.selector == Selector.READ_ROM
    assert request.payload == b"\xDA\x04"
    assert request.response_length == 9


def test_build_control_leds():
    assert build_control(ControlCode.LEDS_ON).payload == b"\xDA\x31"
    assert build_control(ControlCode.LEDS_OFF).payload == b"\xDA\x34"


def test_build_control_rejects_unknown_code():
    with pytest.raises(ValueError):
        build_control(0x77)


@pytest.mark.parametrize("cell,opcode", [(1, 0x31), (3, 0x33), (5, 0x35)])
def test_build_legacy_cell(cell, opcode):
    request = build_legacy_cell(cell)
    assert request == Request(Selector.SKIP_ROM, bytes([opcode]), 2)


@pytest.mark.parametrize("cell", [0, 6])
def test_build_legacy_cell_out_of_range(cell):
    with pytest.raises(ValueError):
        build_legacy_cell(cell)


def test_build_scratchpad_write():
    record = bytes(range(32))
    assert build_scratchpad_write(record) == b"\x0F\x00" + record


def test_build_scratchpad_write_wrong_length():
    with pytest.raises(ValueError):
        build_scratchpad_write(bytes(31))


def test_request_repr():
    assert "0x33" in repr(commands.READ_RECORD)
    assert "f0 00" in repr(commands.READ_RECORD)
