"""Shared fixtures: a recording clock and a simulated single-wire battery."""

from __future__ import annotations

import pytest

from makita_battery_mcp.models.record import StatusRecord
from makita_battery_mcp.protocol.checksum import swap_nibbles
from makita_battery_mcp.utils.crc import crc8

ROM_BASE = bytes([0x15, 0x06, 0x0C, 0x01, 0x00, 0x00, 0x00])
ROM = ROM_BASE + bytes([crc8(ROM_BASE)])


class FakeClock:
    """Clock that records every delay instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.delays)


def make_record(
    error_code: int = 0,
    cycle_count: int = 42,
    capacity_code: int = 0x05,
    battery_type: int = 0x0B,
    overdischarge_code: int = 0x20,
    overload_code: int = 0x30,
) -> StatusRecord:
    """A checksum-consistent status record with the given fields."""
    record = StatusRecord(raw=bytearray(range(0x10, 0x30)))
    record.raw[11] = swap_nibbles(battery_type)
    record.raw[16] = capacity_code
    record.raw[24] = swap_nibbles(overdischarge_code)
    record.raw[25] = swap_nibbles(overload_code)
    record.cycle_count = cycle_count
    record.error_code = error_code
    return record.recompute_checksums()


def _le16(value: int) -> bytes:
    return (value & 0xFFFF).to_bytes(2, "little")


def _kelvin(celsius: float) -> bytes:
    return _le16(round((celsius + 273.15) * 10))


class SimulatedBattery:
    """Byte-level model of a pack controller on the single-wire bus.

    Implements ``Transport`` and ``PowerControl``. Every reset starts a new
    frame; every write re-evaluates the frame and replaces the bytes the
    next read will return. Unanswered reads float high (0xFF).

    EEPROM model: the scratchpad is copied to a pending buffer on commit,
    the pending buffer is persisted on test mode exit, and the live record
    is reloaded from EEPROM when power comes back.
    """

    def __init__(
        self,
        record: StatusRecord | None = None,
        *,
        legacy: bool = False,
        ten_cell: bool = False,
        reset_clears_errors: bool = True,
        accepts_writes: bool = True,
        hardware_health: bool = False,
        present: bool = True,
        cells: tuple[float, ...] | None = None,
        temperature: float = 25.0,
    ):
        self.eeprom = (record or make_record()).copy()
        self.live = self.eeprom.copy()
        self.legacy = legacy
        self.ten_cell = ten_cell
        self.reset_clears_errors = reset_clears_errors
        self.accepts_writes = accepts_writes
        self.hardware_health = hardware_health
        self.present = present
        if cells is None:
            cells = (3.7,) * (10 if ten_cell else 5)
        self.cells = cells
        self.temperature = temperature

        self.powered = True
        self.test_mode = False
        self.leds_on = False
        self.second_tree = False
        self.scratchpad: bytes | None = None
        self.pending: bytes | None = None

        self.resets = 0
        self.commits = 0
        self.frames: list[bytes] = []
        self._frame = bytearray()
        self._out = bytearray()

    # Helpers for tests

    def set_error(self, code: int) -> None:
        """Put an error code in both EEPROM and the live record."""
        self.eeprom.error_code = code
        self.eeprom.recompute_checksums()
        self.live = self.eeprom.copy()

    # PowerControl

    def set_power(self, on: bool) -> None:
        if on and not self.powered:
            self.live = self.eeprom.copy()
        if not on:
            self.test_mode = False
            self.second_tree = False
            self.scratchpad = None
            self.pending = None
        self.powered = on

    # Transport

    def reset(self) -> bool:
        if self._frame:
            self.frames.append(bytes(self._frame))
        self._frame = bytearray()
        self._out = bytearray()
        self.resets += 1
        return self.present and self.powered

    def write_bit(self, bit: int) -> None:
        self.write_byte(0xFF if bit else 0x00)

    def read_bit(self) -> int:
        return self.read_byte() & 0x01

    def write_byte(self, value: int) -> None:
        self.write_bytes(bytes([value]))

    def read_byte(self) -> int:
        return self.read_bytes(1)[0]

    def write_bytes(self, data: bytes) -> None:
        self._frame += data
        if self.present and self.powered:
            self._out = bytearray(self._respond(bytes(self._frame)) or b"")
        else:
            self._out = bytearray()

    def read_bytes(self, count: int) -> bytes:
        data = bytes(self._out[:count]).ljust(count, b"\xff")
        del self._out[:count]
        return data

    # Device behaviour

    def _respond(self, frame: bytes) -> bytes | None:
        selector, payload = frame[0], frame[1:]
        if selector == 0x33:
            return self._addressed(payload)
        if selector == 0xCC:
            return self._skip_rom(payload)
        if selector == 0xD4 and not payload:
            return self._ten_cell_codes()
        if selector == 0x31 and not payload:
            return self._legacy_model()
        return None

    def _addressed(self, payload: bytes) -> bytes | None:
        if not payload:
            return ROM
        if payload == b"\xF0\x00":
            return self.live.to_bytes()
        if self.legacy:
            return None
        if payload == b"\xD9\x96\xA5":
            self.test_mode = True
            return bytes(29)
        if payload == b"\xD9\xFF\xFF":
            if self.test_mode and self.pending is not None:
                self.eeprom = StatusRecord.from_bytes(self.pending)
            self.pending = None
            self.test_mode = False
            return b"\x00"
        if payload[:1] == b"\xDA" and len(payload) == 2:
            return self._control(payload[1])
        if payload[:2] == b"\x0F\x00" and len(payload) == 34:
            if self.accepts_writes and self.test_mode:
                self.scratchpad = bytes(payload[2:])
            return None
        if payload == b"\x55\xA5":
            self.commits += 1
            if self.scratchpad is not None:
                self.pending = self.scratchpad
            return None
        return None

    def _control(self, code: int) -> bytes:
        if code == 0x04 and self.test_mode and self.reset_clears_errors:
            self.live.error_code = 0
            self.live.recompute_checksums()
            self.eeprom = self.live.copy()
        elif code == 0x31:
            self.leds_on = True
        elif code == 0x34:
            self.leds_on = False
        return bytes(9)

    def _skip_rom(self, payload: bytes) -> bytes | None:
        if payload == b"\x99":
            self.second_tree = True
            return None
        if self.legacy:
            return self._legacy_skip_rom(payload)
        if payload == b"\xDC\x0C":
            return b"BL1850B".ljust(10, b"\x00")
        if payload == b"\xD7\x00\x00\xFF":
            if self.ten_cell:
                return None
            block = bytearray(29)
            for i, volts in enumerate(self.cells[:5]):
                block[2 + 2 * i : 4 + 2 * i] = _le16(round(volts * 1000))
            return bytes(block)
        if payload == b"\xD7\x0E\x00\x02":
            return _kelvin(self.temperature) + b"\x00"
        if payload == b"\xD7\x10\x00\x02":
            return _kelvin(self.temperature + 2.0) + b"\x00"
        if payload == b"\xD4\xBA\x00\x01":
            return b"\x10\x06" if self.hardware_health else None
        if payload == b"\xD4\x8D\x00\x07" and self.hardware_health:
            return bytes([0, 0, 0, 0, 0, 0xA0, 0x10, 0])
        if payload == b"\xD4\x50\x01\x02" and self.hardware_health:
            return b"\x00\x0C\x00"
        if payload == b"\x10\x21" and self.ten_cell:
            return b""
        return None

    def _legacy_skip_rom(self, payload: bytes) -> bytes | None:
        if len(payload) == 1 and 0x31 <= payload[0] <= 0x35:
            return _le16(round(self.cells[payload[0] - 0x31] * 1000))
        if payload == b"\x52":
            return _le16(round(self.temperature * 100))
        return None

    def _ten_cell_codes(self) -> bytes | None:
        if not self.ten_cell:
            return None
        return b"".join(_le16(round((5.5 - v) * 11916)) for v in self.cells)

    def _legacy_model(self) -> bytes | None:
        if not (self.legacy and self.second_tree):
            return None
        return b"\x50\x18"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def battery():
    return SimulatedBattery()
