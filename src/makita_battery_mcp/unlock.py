"""Unlock and recovery routines.

``UnlockStateMachine`` escalates through three phases and stops at the first
lock check that passes::

    Phase 1  power cycle + repeated test mode / error reset      (5 cycles)
    Phase 2  clear error nybble, recompute checksums, rewrite    (3 writes)
    Phase 3  long power cycles + repeated error reset            (3 cycles)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum

from .errors import TransportTimeout
from .models.record import StatusRecord
from .protocol.commands import ControlCode
from .protocol.dispatcher import CommandDispatcher
from .protocol.eeprom import EEPROMWriter

logger = logging.getLogger(__name__)

STANDARD_RESET_CYCLES = 5
STANDARD_RESET_REPEATS = 5
STANDARD_RESET_DELAY = 0.2

CHECKSUM_CLEAR_ATTEMPTS = 3

POWER_CYCLE_ROUNDS = 3
POWER_CYCLE_REPEATS = 10
POWER_CYCLE_COMMAND_DELAY = 0.1

HANDSHAKE_OFF_DELAY = 3.0
HANDSHAKE_ON_DELAY = 1.0
HANDSHAKE_REPEATS = 10
HANDSHAKE_COMMAND_DELAY = 0.05
HANDSHAKE_SHORT_OFF_DELAY = 0.2
HANDSHAKE_SHORT_ON_DELAY = 0.3

LED_DELAY = 0.1

FAILURE_MESSAGE = "Unlock failed. Battery may need cell charging or PCB replacement."


class UnlockPhase(IntEnum):
    STANDARD_RESET = 1
    CHECKSUM_CLEAR = 2
    POWER_CYCLE = 3


@dataclass
class UnlockOutcome:
    """Terminal state of an unlock run and the phase it ended in."""

    phase: UnlockPhase
    success: bool
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "phase": int(self.phase),
            "phase_name": self.phase.name.lower(),
            "success": self.success,
            "message": self.message,
        }


class FactoryTemplate(Enum):
    """Record templates for a factory reset."""

    MINIMAL = "minimal"
    C1 = "c1"
    X94 = "x94"


class LockMode(Enum):
    """How ``lock_for_test`` locks a pack."""

    BAD_CHECKSUM = "bad_checksum"
    OVERLOADED = "overloaded"
    WARNING = "warning"
    DEAD = "dead"


LOCK_ERROR_CODES = {
    LockMode.OVERLOADED: 0x1,
    LockMode.WARNING: 0x5,
    LockMode.DEAD: 0xF,
}


def apply_factory_template(record: StatusRecord, template: FactoryTemplate) -> StatusRecord:
    """Apply template bytes, clear the error and recompute checksums in place."""
    if template is FactoryTemplate.C1:
        record.raw[8] = record.raw[9] = 0xC1
        record.raw[24] = 0x92
    elif template is FactoryTemplate.X94:
        record.raw[8] = record.raw[9] = 0x94
        record.raw[24] = 0x02
    return record.clear_error()


class UnlockStateMachine:
    """Drives the dispatcher and EEPROM writer to clear a locked pack."""

    def __init__(self, dispatcher: CommandDispatcher, writer: EEPROMWriter) -> None:
        self._dispatcher = dispatcher
        self._writer = writer

    def run(self) -> UnlockOutcome:
        for phase, step in (
            (UnlockPhase.STANDARD_RESET, self.standard_reset),
            (UnlockPhase.CHECKSUM_CLEAR, self.checksum_clear),
            (UnlockPhase.POWER_CYCLE, self.power_cycle),
        ):
            logger.info("Unlock phase %d: %s", phase, phase.name.lower())
            try:
                unlocked = step()
            except TransportTimeout as e:
                logger.warning("Unlock aborted in phase %d: %s", phase, e)
                return UnlockOutcome(phase, False, f"Unlock aborted, bridge not responding: {e}")
            if unlocked:
                logger.info("Battery unlocked in phase %d", phase)
                return UnlockOutcome(phase, True, "Battery unlocked")

        logger.warning(FAILURE_MESSAGE)
        return UnlockOutcome(UnlockPhase.POWER_CYCLE, False, FAILURE_MESSAGE)

    def _reset_burst(self, repeats: int, delay: float, delay_first: bool) -> None:
        dispatcher = self._dispatcher
        for _ in range(repeats):
            if delay_first:
                dispatcher.clock.sleep(delay)
                dispatcher.enter_test_mode()
                dispatcher.reset_errors()
            else:
                dispatcher.enter_test_mode()
                dispatcher.clock.sleep(delay)
                dispatcher.reset_errors()
                dispatcher.clock.sleep(delay)

    def standard_reset(self) -> bool:
        for cycle in range(STANDARD_RESET_CYCLES):
            self._dispatcher.power_cycle()
            self._reset_burst(STANDARD_RESET_REPEATS, STANDARD_RESET_DELAY, delay_first=True)
            if not self._dispatcher.is_battery_locked():
                return True
            logger.debug("Standard reset cycle %d: still locked", cycle + 1)
        return False

    def checksum_clear(self) -> bool:
        result = self._dispatcher.read_record()
        if result is None:
            logger.warning("Checksum clear skipped: record unreadable")
            return False

        _, record = result
        record.clear_error()
        logger.info("New checksums: %s", "/".join(f"{c:X}" for c in record.checksums[:3]))

        for attempt in range(CHECKSUM_CLEAR_ATTEMPTS):
            self._writer.write_record(record)
            self._dispatcher.reload_power_cycle()
            if not self._dispatcher.is_battery_locked():
                return True
            logger.debug("Checksum clear write %d: still locked", attempt + 1)
        return False

    def power_cycle(self) -> bool:
        for cycle in range(POWER_CYCLE_ROUNDS):
            self._dispatcher.reload_power_cycle()
            self._reset_burst(POWER_CYCLE_REPEATS, POWER_CYCLE_COMMAND_DELAY, delay_first=False)
            if not self._dispatcher.is_battery_locked():
                return True
            logger.debug("Power cycle round %d: still locked", cycle + 1)
        return False


def reset_handshake_state(dispatcher: CommandDispatcher, writer: EEPROMWriter) -> bool:
    """Clear the charger handshake state. Returns whether a clear was written."""
    dispatcher.power_cycle(HANDSHAKE_OFF_DELAY, HANDSHAKE_ON_DELAY)

    for i in range(HANDSHAKE_REPEATS):
        dispatcher.enter_test_mode()
        dispatcher.clock.sleep(HANDSHAKE_COMMAND_DELAY)
        dispatcher.reset_errors()
        dispatcher.clock.sleep(HANDSHAKE_COMMAND_DELAY)
        if i % 3 == 2:
            dispatcher.power_cycle(HANDSHAKE_SHORT_OFF_DELAY, HANDSHAKE_SHORT_ON_DELAY)

    written = False
    result = dispatcher.read_record()
    if result is not None:
        _, record = result
        writer.write_record(record.clear_error())
        written = True

    dispatcher.reload_power_cycle()
    return written


def lock_for_test(
    dispatcher: CommandDispatcher,
    writer: EEPROMWriter,
    mode: LockMode,
) -> bool | None:
    """Deliberately lock a pack. Returns the resulting lock state, or None if unreadable."""
    result = dispatcher.read_record()
    if result is None:
        return None
    _, record = result

    if mode is LockMode.BAD_CHECKSUM:
        record.raw[21] ^= 0xF0
        writer.write_record(record)
    else:
        record.error_code = LOCK_ERROR_CODES[mode]
        writer.write_record_safe(record)

    dispatcher.reload_power_cycle()
    dispatcher.send_control(ControlCode.LEDS_ON)
    dispatcher.clock.sleep(LED_DELAY)
    return dispatcher.is_battery_locked()
