"""Record decoders: chip family, capacity, voltages, temperatures and health.

Most of these formulas were reverse-engineered from packs in the field. The
capacity format heuristic and the round-to-5 table in particular have no
documented source; keep them as they are.
"""

from __future__ import annotations

import logging

from ..models.battery import (
    FIVE_CELL_COUNT,
    TEN_CELL_COUNT,
    BatteryData,
    Chemistry,
    ChipFamily,
    HealthInfo,
    VoltageInfo,
)
from ..models.record import StatusRecord
from . import commands
from .checksum import swap_nibbles
from .commands import LegacyCommand
from .dispatcher import SENTINEL, CommandDispatcher

logger = logging.getLogger(__name__)

KELVIN_OFFSET = 273.15
MAX_CELL_VOLTAGE = 5.0
# 10-cell packs report each cell as an inverted ADC code
BL36_INTERCEPT = 5.5
BL36_COUNTS_PER_VOLT = 11916.0
LEGACY_MAX_PLAUSIBLE_TEMPERATURE = 45.0

SOC_FULL_VOLTAGE = 4.20
SOC_EMPTY_VOLTAGE = 3.00
SOC_PERCENT_PER_VOLT = 83.33

BL36_TYPE_CODE = 14
BL14_OVERLOAD_LIMIT = 0x0C

_ROUND5_OFFSETS = (0, -1, -2, 2, 1)


def _clamp(value: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, value))


def _u16(data: bytes, offset: int = 0) -> int:
    return data[offset] | (data[offset + 1] << 8)


def _is_sentinel_pair(data: bytes, offset: int = 0) -> bool:
    return data[offset] == SENTINEL and data[offset + 1] == SENTINEL


# Chip family

def detect_chip_family(dispatcher: CommandDispatcher) -> ChipFamily:
    """Only F0513 controllers answer the legacy model query."""
    reply = dispatcher.legacy_query(LegacyCommand.MODEL)
    family = ChipFamily.STANDARD if _is_sentinel_pair(reply) else ChipFamily.LEGACY
    logger.debug("Chip family: %s", family.value)
    return family


# Capacity

def round5(value: int) -> int:
    """Round to the nearest multiple of 5."""
    return value + _ROUND5_OFFSETS[value % 5]


def is_new_capacity_format(code: int) -> bool:
    return swap_nibbles(code) > 60 and 1 <= code <= 8


def capacity_mah(code: int) -> int:
    if is_new_capacity_format(code):
        return code * 1000
    return swap_nibbles(code) * 100


def capacity_for_model(code: int) -> int:
    """Capacity as it appears in the model name, in tenths of Ah."""
    if is_new_capacity_format(code):
        return code * 10
    return round5(swap_nibbles(code))


# State of charge

def voltage_to_soc(voltage: float) -> int:
    """Linear Li-ion approximation between 3.0 V (0%) and 4.2 V (100%)."""
    if voltage >= SOC_FULL_VOLTAGE:
        return 100
    if voltage <= SOC_EMPTY_VOLTAGE:
        return 0
    return int((voltage - SOC_EMPTY_VOLTAGE) * SOC_PERCENT_PER_VOLT)


def balance_status(spread: float) -> str:
    if spread < 0.02:
        return "GOOD"
    if spread < 0.05:
        return "OK"
    if spread < 0.15:
        return "FAIR"
    return "POOR"


# Temperature

def decode_temperature(reply: bytes) -> float | None:
    """Signed Kelvin x 10 to °C; ``None`` when the reply is sentinel."""
    if _is_sentinel_pair(reply):
        return None
    raw = int.from_bytes(reply[:2], "little", signed=True)
    return raw / 10.0 - KELVIN_OFFSET


def cell_temperature(dispatcher: CommandDispatcher) -> float | None:
    return decode_temperature(dispatcher.query(commands.READ_CELL_TEMPERATURE))


def mosfet_temperature(dispatcher: CommandDispatcher) -> float | None:
    return decode_temperature(dispatcher.query(commands.READ_MOSFET_TEMPERATURE))


def decode_legacy_temperature(reply: bytes) -> float:
    """F0513 packs use either a /100 or a /256 scale; take the plausible one."""
    raw = _u16(reply)
    centi = raw / 100.0
    if centi > LEGACY_MAX_PLAUSIBLE_TEMPERATURE:
        return raw / 256.0
    return centi


# Voltages

def decode_five_cell_block(
    block: bytes,
    cell_temp: float | None = None,
    mosfet_temp: float | None = None,
) -> VoltageInfo | None:
    """Decode five little-endian millivolt values starting at offset 2."""
    if _is_sentinel_pair(block, 2):
        return None
    cells = [_u16(block, 2 + 2 * i) / 1000.0 for i in range(FIVE_CELL_COUNT)]
    # Older chips report doubled values
    if any(v > MAX_CELL_VOLTAGE for v in cells):
        cells = [v / 2.0 for v in cells]
    return VoltageInfo.from_cells(cells, cell_temp, mosfet_temp)


def read_five_cell_voltages(dispatcher: CommandDispatcher) -> VoltageInfo | None:
    """Read the 5-cell data block, falling back to per-cell F0513 queries."""
    block = dispatcher.query(commands.READ_DATA_BLOCK)

    if not _is_sentinel_pair(block):
        return decode_five_cell_block(
            block,
            cell_temperature(dispatcher),
            mosfet_temperature(dispatcher),
        )

    logger.debug("Data block unsupported, using legacy cell queries")
    legacy = bytearray([SENTINEL]) * 12
    for cell in range(1, FIVE_CELL_COUNT + 1):
        reply = dispatcher.query(commands.build_legacy_cell(cell))
        legacy[2 * cell : 2 * cell + 2] = reply[:2]
    temperature = decode_legacy_temperature(dispatcher.query(commands.LEGACY_TEMPERATURE))
    return decode_five_cell_block(bytes(legacy), temperature, None)


def code_to_voltage(raw: int) -> float:
    return BL36_INTERCEPT - raw / BL36_COUNTS_PER_VOLT


def decode_ten_cell_block(block: bytes) -> VoltageInfo:
    cells = [code_to_voltage(_u16(block, 2 * i)) for i in range(TEN_CELL_COUNT)]
    return VoltageInfo.from_cells(cells)


def read_ten_cell_voltages(dispatcher: CommandDispatcher) -> VoltageInfo | None:
    """Enter the 40 V test mode and read ten cell codes."""
    if dispatcher.execute(commands.ENTER_BL36_TEST_MODE) is None:
        return None
    response = dispatcher.execute(commands.READ_BL36_VOLTAGES)
    if response is None:
        return None
    return decode_ten_cell_block(response.data)


def detect_chemistry(dispatcher: CommandDispatcher) -> tuple[Chemistry, VoltageInfo | None]:
    """Try the 5-cell path, then the 10-cell path."""
    voltages = read_five_cell_voltages(dispatcher)
    if voltages is not None:
        return Chemistry.FIVE_CELL, voltages
    voltages = read_ten_cell_voltages(dispatcher)
    if voltages is not None:
        return Chemistry.TEN_CELL, voltages
    return Chemistry.UNKNOWN, None


# Health

def has_hardware_health(dispatcher: CommandDispatcher) -> bool:
    reply = dispatcher.query(commands.READ_HEALTH_CAPABILITY)
    return reply[1] == commands.HEALTH_CAPABLE_MARKER


def decode_overdischarge(reply: bytes) -> int:
    if reply[0] == SENTINEL:
        return 0
    return min(reply[0] * 2, 100)


def decode_overload(reply: bytes) -> int:
    return ((reply[5] & 0xF0) >> 4) | (reply[6] & 0x70)


def decode_health(reply: bytes) -> int:
    raw = reply[1]
    if raw == SENTINEL or raw < 10:
        return 100
    return _clamp(14 * (raw - 10))


def read_hardware_health(dispatcher: CommandDispatcher) -> HealthInfo:
    return HealthInfo(
        overload=decode_overload(dispatcher.query(commands.READ_OVERLOAD)),
        overdischarge=decode_overdischarge(dispatcher.query(commands.READ_HEALTH_CAPABILITY)),
        health=decode_health(dispatcher.query(commands.READ_HEALTH)),
        source="bms",
    )


def estimate_health(record: StatusRecord) -> HealthInfo:
    """Estimate wear from record fields.

    Raises:
        ChecksumInvalid: If the record is not trusted.
    """
    record.require_trusted()
    return HealthInfo(
        overload=_clamp(5 * record.overload_code - 160),
        overdischarge=_clamp(-5 * record.overdischarge_code + 160),
        health=_clamp(100 - int(record.cycle_count / 8.96)),
        source="estimate",
    )


def read_health(dispatcher: CommandDispatcher, record: StatusRecord) -> HealthInfo:
    if has_hardware_health(dispatcher):
        return read_hardware_health(dispatcher)
    return estimate_health(record)


# Model and diagnosis

def model_from_record(record: StatusRecord) -> str:
    capacity = capacity_for_model(record.capacity_code)
    if record.battery_type == BL36_TYPE_CODE:
        return "BL3626"
    if record.overload_code < BL14_OVERLOAD_LIMIT:
        return f"BL14{capacity:02d}"
    return f"BL18{capacity:02d}"


def describe_model(dispatcher: CommandDispatcher, record: StatusRecord | None = None) -> str | None:
    """Model name from the model command, the F0513 query, or the record."""
    reply = dispatcher.read_model()
    if reply is not None and reply[:2] == b"BL":
        return reply[:6].decode("ascii", errors="replace")

    legacy = dispatcher.legacy_query(LegacyCommand.MODEL)
    if not _is_sentinel_pair(legacy):
        return f"BL{legacy[1]:02X}{legacy[0]:02X}"

    if record is not None:
        return model_from_record(record)
    return None


def diagnose(data: BatteryData, family: ChipFamily) -> list[str]:
    """Problems visible in a cached read, most specific first."""
    if not data.valid or data.record is None:
        return ["No data available"]

    error_set = data.record.error_code != 0
    undervoltage = imbalance = overheat = False
    if data.voltages is not None:
        undervoltage = data.voltages.min_cell < 3.0
        imbalance = error_set and data.voltages.spread > 0.15
        temperature = data.voltages.cell_temperature
        overheat = temperature is not None and temperature > 40.0

    if not (undervoltage or imbalance or overheat or error_set):
        return []

    if family is ChipFamily.LEGACY:
        return ["F0513 chip: error reset unsupported"]

    problems = []
    if undervoltage:
        problems.append("Cell undervoltage: charge low cell(s) individually")
    if imbalance:
        problems.append("Cells out of balance: balance cells manually")
    if overheat:
        problems.append("Battery overheated: let battery cool down")
    if error_set and not undervoltage and not imbalance:
        problems.append("Chip error: try resetting the battery")
    return problems
