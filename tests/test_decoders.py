"""Tests for capacity, voltage, temperature and health decoding."""

import pytest

from makita_battery_mcp.errors import ChecksumInvalid
from makita_battery_mcp.models.battery import BatteryData, ChipFamily, VoltageInfo
from makita_battery_mcp.protocol.decoders import (
    balance_status,
    capacity_for_model,
    capacity_mah,
    code_to_voltage,
    decode_five_cell_block,
    decode_health,
    decode_legacy_temperature,
    decode_overdischarge,
    decode_overload,
    decode_temperature,
    decode_ten_cell_block,
    diagnose,
    estimate_health,
    is_new_capacity_format,
    model_from_record,
    round5,
    voltage_to_soc,
)

from conftest import make_record


def _block(millivolts):
    block = bytearray(29)
    for i, mv in enumerate(millivolts):
        block[2 + 2 * i : 4 + 2 * i] = mv.to_bytes(2, "little")
    return bytes(block)


# Capacity

def test_new_capacity_format():
    assert is_new_capacity_format(0x05)
    assert capacity_mah(0x05) == 5000
    assert capacity_for_model(0x05) == 50


def test_old_capacity_format():
    assert not is_new_capacity_format(0x21)
    assert capacity_mah(0x21) == 1800
    assert capacity_for_model(0x21) == 20


def test_capacity_code_above_eight_is_old_format():
    # swap(0x09) = 0x90 > 60 but 9 is outside 1..8
    assert capacity_mah(0x09) == 0x90 * 100


@pytest.mark.parametrize(
    "value,expected",
    [(50, 50), (51, 50), (52, 50), (53, 55), (54, 55), (18, 20), (30, 30)],
)
def test_round5(value, expected):
    assert round5(value) == expected


# State of charge

@pytest.mark.parametrize("volts,soc", [(4.3, 100), (4.2, 100), (3.0, 0), (2.5, 0), (3.6, 49)])
def test_voltage_to_soc(volts, soc):
    assert voltage_to_soc(volts) == soc


@pytest.mark.parametrize(
    "spread,status", [(0.01, "GOOD"), (0.03, "OK"), (0.1, "FAIR"), (0.2, "POOR")]
)
def test_balance_status(spread, status):
    assert balance_status(spread) == status


# Temperature

def test_decode_temperature():
    raw = (2982).to_bytes(2, "little") + b"\x00"
    assert decode_temperature(raw) == pytest.approx(25.05)


def test_decode_temperature_sentinel():
    assert decode_temperature(b"\xFF\xFF\xFF") is None


def test_decode_legacy_temperature_centidegrees():
    assert decode_legacy_temperature((2500).to_bytes(2, "little")) == pytest.approx(25.0)


def test_decode_legacy_temperature_falls_back_to_256_scale():
    # 6400 / 100 = 64 C is implausible, 6400 / 256 = 25 C is not
    assert decode_legacy_temperature((6400).to_bytes(2, "little")) == pytest.approx(25.0)


# Voltages

def test_decode_five_cell_block():
    info = decode_five_cell_block(_block([3700, 3710, 3690, 3705, 3700]), 25.0, 27.0)
    assert info.cells == pytest.approx([3.7, 3.71, 3.69, 3.705, 3.7])
    assert info.spread == pytest.approx(0.02)
    assert info.pack_total == pytest.approx(18.505)
    assert info.cell_temperature == 25.0
    assert info.mosfet_temperature == 27.0


def test_decode_five_cell_block_halves_doubled_values():
    info = decode_five_cell_block(_block([8000, 7400, 7400, 7400, 7400]))
    assert info.cells == pytest.approx([4.0, 3.7, 3.7, 3.7, 3.7])


def test_decode_five_cell_block_sentinel():
    block = bytearray(_block([3700] * 5))
    block[2] = block[3] = 0xFF
    assert decode_five_cell_block(bytes(block)) is None


def test_code_to_voltage():
    assert code_to_voltage(0x0000) == pytest.approx(5.5)
    assert code_to_voltage(11916) == pytest.approx(4.5)
    assert code_to_voltage(0x2E0C) == pytest.approx(4.5, abs=0.02)


def test_decode_ten_cell_block():
    block = b"".join((11916).to_bytes(2, "little") for _ in range(10))
    info = decode_ten_cell_block(block)
    assert len(info.cells) == 10
    assert info.pack_total == pytest.approx(45.0)
    assert info.spread == pytest.approx(0.0)


def test_voltage_vector_has_nine_slots():
    info = VoltageInfo.from_cells([4.0] * 10, 25.0, None)
    vector = info.to_vector()
    assert len(vector) == 9
    assert vector[5] == pytest.approx(0.0)
    assert vector[6] == pytest.approx(40.0)
    assert vector[8] is None


def test_min_cell_covers_every_cell():
    info = VoltageInfo.from_cells([4.0] * 9 + [3.2], 25.0, None)
    assert info.min_cell == pytest.approx(3.2)


# Health

def test_decode_overdischarge():
    assert decode_overdischarge(b"\x10\x06") == 32
    assert decode_overdischarge(b"\x40\x06") == 100
    assert decode_overdischarge(b"\xFF\x06") == 0


def test_decode_overload():
    assert decode_overload(bytes([0, 0, 0, 0, 0, 0xA0, 0x35, 0])) == 0x3A


@pytest.mark.parametrize("raw,health", [(0xFF, 100), (5, 100), (10, 0), (12, 28), (20, 100)])
def test_decode_health(raw, health):
    assert decode_health(bytes([0, raw, 0])) == health


def test_estimate_health():
    record = make_record(cycle_count=100, overdischarge_code=0x1E, overload_code=0x22)
    health = estimate_health(record)
    assert health.source == "estimate"
    assert health.health == 89
    assert health.overdischarge == 10
    assert health.overload == 10


def test_estimate_health_clamps():
    health = estimate_health(make_record(cycle_count=4095, overdischarge_code=0, overload_code=0))
    assert health.health == 0
    assert health.overdischarge == 100
    assert health.overload == 0


def test_estimate_health_refuses_untrusted_record():
    record = make_record()
    record.raw[21] ^= 0x01
    with pytest.raises(ChecksumInvalid):
        estimate_health(record)


# Model and diagnosis

def test_model_from_record():
    assert model_from_record(make_record(capacity_code=0x05, overload_code=0x30)) == "BL1850"
    assert model_from_record(make_record(capacity_code=0x05, overload_code=0x08)) == "BL1450"
    assert model_from_record(make_record(battery_type=14)) == "BL3626"


def _data(error_code=0, cells=(3.7,) * 5, temperature=25.0):
    return BatteryData(
        record=make_record(error_code=error_code),
        voltages=VoltageInfo.from_cells(list(cells), temperature),
        valid=True,
        cell_count=5,
    )


def test_diagnose_healthy():
    assert diagnose(_data(), ChipFamily.STANDARD) == []


def test_diagnose_chip_error():
    assert diagnose(_data(error_code=1), ChipFamily.STANDARD) == [
        "Chip error: try resetting the battery"
    ]


def test_diagnose_undervoltage():
    problems = diagnose(_data(error_code=1, cells=(2.5, 3.7, 3.7, 3.7, 3.7)), ChipFamily.STANDARD)
    assert problems[0].startswith("Cell undervoltage")
    assert not any(p.startswith("Chip error") for p in problems)


def test_diagnose_undervoltage_in_upper_cells():
    data = _data(cells=(3.7,) * 9 + (2.8,))
    data.cell_count = 10
    assert diagnose(data, ChipFamily.STANDARD)[0].startswith("Cell undervoltage")


def test_diagnose_imbalance_needs_error():
    cells = (3.5, 3.9, 3.9, 3.9, 3.9)
    assert diagnose(_data(cells=cells), ChipFamily.STANDARD) == []
    assert any(
        p.startswith("Cells out of balance")
        for p in diagnose(_data(error_code=1, cells=cells), ChipFamily.STANDARD)
    )


def test_diagnose_overheat():
    assert diagnose(_data(temperature=45.0), ChipFamily.STANDARD) == [
        "Battery overheated: let battery cool down"
    ]


def test_diagnose_legacy_chip():
    assert diagnose(_data(error_code=1), ChipFamily.LEGACY) == [
        "F0513 chip: error reset unsupported"
    ]


def test_diagnose_without_data():
    assert diagnose(BatteryData(), ChipFamily.STANDARD) == ["No data available"]
