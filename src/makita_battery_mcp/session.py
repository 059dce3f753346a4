"""Battery session: the cache, the saved record, and every exposed operation.

A ``BatterySession`` is the only owner of mutable state. It is constructed
empty, its ``data`` cache is cleared at the start of each
:meth:`BatterySession.read_all_battery_data` call and marked valid only at
the end, and the saved-record slot changes only through
:meth:`BatterySession.save_record`.
"""

from __future__ import annotations

import logging

from .errors import (
    ChecksumInvalid,
    CommitUnverified,
    NoResponse,
    TransportTimeout,
    UnsupportedOperation,
)
from .models.battery import (
    FIVE_CELL_COUNT,
    TEN_CELL_COUNT,
    BatteryData,
    Chemistry,
    ChipFamily,
)
from .models.record import MAX_CYCLE_COUNT, RomId, StatusRecord, error_label
from .protocol import commands, decoders
from .protocol.commands import ControlCode
from .protocol.dispatcher import SENTINEL, CommandDispatcher
from .protocol.eeprom import EEPROMWriter
from .transport.base import Clock, PowerControl, Transport
from .unlock import (
    FactoryTemplate,
    LockMode,
    UnlockOutcome,
    UnlockStateMachine,
    apply_factory_template,
    lock_for_test,
    reset_handshake_state,
)

logger = logging.getLogger(__name__)

POST_READ_RESET_DELAY = 0.1
POST_READ_TEMPERATURE_DELAY = 0.05
DISCARDED_TEMPERATURE_READS = 2

ERROR_RESET_ROUNDS = 3
ERROR_RESET_DELAY = 0.3

LED_TEST_MODE_DELAY = 0.1
LED_RESET_DELAY = 0.05

# Record bytes worth naming in a diff
DIFF_LABELS = {20: "ERR/LOCK", 21: "CHK", 26: "CYC", 27: "CYC", 31: "CHK"}


class BatterySession:
    """Operations on one battery behind one transport.

    Usage::

        session = BatterySession(bridge, bridge)
        if session.read_all_battery_data():
            print(session.battery_info())
    """

    def __init__(
        self,
        transport: Transport,
        power: PowerControl,
        clock: Clock | None = None,
    ) -> None:
        self.dispatcher = CommandDispatcher(transport, power, clock)
        self.writer = EEPROMWriter(self.dispatcher)
        self.data = BatteryData()
        self.saved_record: StatusRecord | None = None

    # Reads

    def read_record(self) -> tuple[RomId, StatusRecord] | None:
        return self.dispatcher.read_record()

    def _require_record(self) -> StatusRecord:
        result = self.read_record()
        if result is None:
            raise NoResponse("Cannot read battery data")
        return result[1]

    def read_all_battery_data(self) -> bool:
        """Refresh the cache. Returns False if the status record could not be read."""
        self.data.clear()
        try:
            return self._read_all()
        except TransportTimeout as e:
            logger.warning("Battery read failed: %s", e)
            return False

    def _read_all(self) -> bool:
        data = self.data
        dispatcher = self.dispatcher
        dispatcher.warm_up()

        result = dispatcher.read_record()
        if result is None:
            logger.warning("Battery read failed: no status record")
            return False
        rom, record = result

        # The first SKIP_ROM commands after a READ_ROM exchange fail
        dispatcher.transport.reset()
        dispatcher.clock.sleep(POST_READ_RESET_DELAY)
        for _ in range(DISCARDED_TEMPERATURE_READS):
            decoders.cell_temperature(dispatcher)
            dispatcher.clock.sleep(POST_READ_TEMPERATURE_DELAY)

        chemistry, voltages = decoders.detect_chemistry(dispatcher)

        data.rom = rom
        data.record = record
        data.voltages = voltages
        data.is_bl36 = chemistry is Chemistry.TEN_CELL
        data.cell_count = {
            Chemistry.FIVE_CELL: FIVE_CELL_COUNT,
            Chemistry.TEN_CELL: TEN_CELL_COUNT,
        }.get(chemistry, 0)
        data.valid = True

        logger.info("Battery read complete: %s, %s", rom.hex(), chemistry.value)
        return True

    def is_battery_locked(self) -> bool:
        return self.dispatcher.is_battery_locked()

    def chip_family(self) -> ChipFamily:
        return decoders.detect_chip_family(self.dispatcher)

    def is_legacy_chip(self) -> bool:
        return self.chip_family() is ChipFamily.LEGACY

    def has_hardware_health(self) -> bool:
        return decoders.has_hardware_health(self.dispatcher)

    def _require_standard_chip(self, operation: str) -> None:
        if self.is_legacy_chip():
            raise UnsupportedOperation(f"F0513 chip: {operation} not supported")

    # Reports over the cache

    def model_name(self) -> str | None:
        record = self.data.record if self.data.valid else None
        return decoders.describe_model(self.dispatcher, record)

    def battery_info(self) -> dict:
        """Summary of the cached read. Requires a prior successful read."""
        if not self.data.valid or self.data.record is None:
            return {"error": "No cached battery data. Read the battery first."}

        rom = self.data.rom
        record = self.data.record
        info = {
            "rom_id": rom.hex(),
            "rom_crc_ok": rom.crc_ok,
            "manufacture_date": rom.date_string,
            "charge_count": record.cycle_count,
            "error_code": record.error_code,
            "error": error_label(record.error_code),
            "checksum_valid": record.is_trusted,
            "locked": record.is_locked,
            "design_capacity_mah": decoders.capacity_mah(record.capacity_code),
            "battery_type": record.battery_type,
            "chemistry": self.data.chemistry.value,
        }

        try:
            info["health"] = decoders.read_health(self.dispatcher, record).to_dict()
        except ChecksumInvalid:
            info["health"] = None

        if self.data.voltages is not None:
            info["state_of_charge"] = decoders.voltage_to_soc(self.data.voltages.min_cell)
        return info

    def voltage_report(self) -> dict:
        voltages = self.data.voltages
        if not self.data.valid or voltages is None:
            return {"error": "No voltage data. Read the battery first."}
        report = voltages.to_dict()
        report["chemistry"] = self.data.chemistry.value
        report["balance"] = decoders.balance_status(voltages.spread)
        return report

    def raw_dump(self) -> dict:
        """Decoded record fields, re-reading the pack first if the cache is stale."""
        if not self.data.valid and not self.read_all_battery_data():
            return {"error": "Failed to read battery data."}
        record = self.data.record
        dump = record.to_dict()
        dump["rom"] = self.data.rom.hex()
        dump["capacity_mah"] = decoders.capacity_mah(record.capacity_code)
        dump["overdischarge_percent_raw"] = -5 * record.overdischarge_code + 160
        dump["overload_percent_raw"] = 5 * record.overload_code - 160
        dump["voltages"] = self.data.voltages.to_dict() if self.data.voltages else None
        return dump

    def diagnosis(self) -> list[str]:
        if not self.data.valid:
            return ["No data available"]
        return decoders.diagnose(self.data, self.chip_family())

    # Saved record

    def save_record(self) -> StatusRecord:
        """Copy the device's current record into the saved slot."""
        record = self._require_record()
        self.saved_record = record.copy()
        logger.info(
            "Record saved: err=0x%X cycles=%d", record.error_code, record.cycle_count
        )
        return self.saved_record

    def compare_record(self) -> list[tuple[int, int, int]]:
        """``(index, saved, current)`` for every byte that changed since the save."""
        if self.saved_record is None:
            raise RuntimeError("No saved record. Save one first.")
        return self.saved_record.diff(self._require_record())

    def clone_record(self, confirm: bool) -> bool:
        """Write the saved record, error cleared, to the connected pack.

        Returns False when not confirmed.

        Raises:
            CommitUnverified: If the read-back differs from what was written.
        """
        if self.saved_record is None:
            raise RuntimeError("No saved record. Save one from a working battery first.")
        if not confirm:
            logger.info("Clone cancelled")
            return False

        clone = self.saved_record.copy().clear_error()
        self.writer.write_record(clone)

        result = self.read_record()
        if result is None or result[1].raw != clone.raw:
            raise CommitUnverified("Cloned record did not read back")
        return True

    # Writes and resets

    def reset_battery_errors(self) -> None:
        self._require_standard_chip("error reset")
        for _ in range(ERROR_RESET_ROUNDS):
            self.dispatcher.clock.sleep(ERROR_RESET_DELAY)
            self.dispatcher.enter_test_mode()
            self.dispatcher.reset_errors()
        logger.info("Error reset sent")

    def set_leds(self, on: bool) -> None:
        self._require_standard_chip("LED control")
        dispatcher = self.dispatcher
        dispatcher.enter_test_mode()
        dispatcher.clock.sleep(LED_TEST_MODE_DELAY)
        dispatcher.transport.reset()
        dispatcher.clock.sleep(LED_RESET_DELAY)
        dispatcher.send_control(ControlCode.LEDS_ON if on else ControlCode.LEDS_OFF)

    def set_cycle_count(self, count: int) -> int:
        """Rewrite the charge cycle counter and return the verified value."""
        if not 0 <= count <= MAX_CYCLE_COUNT:
            raise ValueError(f"Cycle count must be 0-{MAX_CYCLE_COUNT}, got {count}")

        record = self._require_record()
        logger.info("Cycle count %d -> %d", record.cycle_count, count)
        record.cycle_count = count
        self.writer.write_record_safe(record)

        verified = self._require_record().cycle_count
        if verified != count:
            raise CommitUnverified(f"Cycle count reads back as {verified}, expected {count}")
        return verified

    def factory_reset(self, template: FactoryTemplate) -> bool:
        """Apply a template record. Returns True once the pack reads back unlocked."""
        record = apply_factory_template(self._require_record(), FactoryTemplate(template))
        self.writer.write_record(record)

        if self.dispatcher.is_battery_locked():
            raise CommitUnverified("Battery still locked after factory reset")
        return True

    def unlock_battery(self) -> UnlockOutcome:
        self._require_standard_chip("unlock")
        return UnlockStateMachine(self.dispatcher, self.writer).run()

    def reset_handshake_state(self) -> bool:
        self._require_standard_chip("handshake reset")
        return reset_handshake_state(self.dispatcher, self.writer)

    def lock_for_test(self, mode: LockMode) -> bool | None:
        mode = LockMode(mode)
        self._require_standard_chip("test lock")
        return lock_for_test(self.dispatcher, self.writer, mode)

    def diagnose_charger_handshake(self) -> dict:
        """Check each exchange a charger depends on."""
        dispatcher = self.dispatcher
        report: dict = {}

        result = self.read_record()
        if result is None:
            report["record"] = None
        else:
            report["record"] = {
                "error_code": result[1].error_code,
                "locked": result[1].is_locked,
            }

        dispatcher.transport.reset()
        dispatcher.clock.sleep(POST_READ_RESET_DELAY)
        decoders.cell_temperature(dispatcher)
        dispatcher.clock.sleep(POST_READ_TEMPERATURE_DELAY)
        cell = decoders.cell_temperature(dispatcher)
        mosfet = decoders.mosfet_temperature(dispatcher)
        report["cell_temperature"] = cell
        report["mosfet_temperature"] = mosfet

        block = dispatcher.query(commands.READ_DATA_BLOCK)
        report["data_block"] = block[0] != SENTINEL
        report["hardware_health"] = self.has_hardware_health()
        report["passed"] = cell is not None and 0 < cell < 50
        return report


def describe_diff(diff: list[tuple[int, int, int]]) -> list[dict]:
    """JSON-friendly form of a record diff, with known fields named."""
    return [
        {
            "index": i,
            "saved": f"0x{old:02X}",
            "current": f"0x{new:02X}",
            "field": DIFF_LABELS.get(i, ""),
        }
        for i, old, new in diff
    ]
