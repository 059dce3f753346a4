"""EEPROM write protocol for the status record.

Sequence::

    enter test mode
    dummy record read          (first read after test mode is unreliable)
    READ_ROM + 0F 00 + record  (scratchpad)
    commit x3                  (READ_ROM + 55 A5, each after a fresh reset)
    exit test mode             (without this nothing is committed)
    power cycle                (controller reloads from EEPROM)

No attempt reports failure on its own. Callers re-read the record to find
out whether the write took.
"""

from __future__ import annotations

import logging

from ..models.record import StatusRecord
from . import commands
from .dispatcher import CommandDispatcher

logger = logging.getLogger(__name__)

TEST_MODE_DELAY = 0.1
EEPROM_RESET_RETRY_DELAY = 0.1
SCRATCHPAD_SETTLE_DELAY = 0.5
COMMIT_ATTEMPTS = 3
# 10 ms per byte x 32 bytes is the minimum; 0.5 s has proven reliable
COMMIT_PROGRAM_DELAY = 0.5
STORE_SETTLE_DELAY = 0.5
EXIT_TEST_MODE_DELAY = 0.2
RELOAD_DELAY = 0.3


class EEPROMWriter:
    """Writes status records through a ``CommandDispatcher``."""

    def __init__(self, dispatcher: CommandDispatcher) -> None:
        self._dispatcher = dispatcher

    def store(self, record: bytes) -> bool:
        """Load the scratchpad and commit it.

        Returns False only if the device never answered the first reset.
        """
        dispatcher = self._dispatcher
        transport = dispatcher.transport
        clock = dispatcher.clock

        if not dispatcher.acquire_bus(EEPROM_RESET_RETRY_DELAY, recover=False):
            logger.warning("Scratchpad write skipped: no presence pulse")
            return False
        dispatcher.read_rom()
        transport.write_bytes(commands.build_scratchpad_write(record))
        clock.sleep(SCRATCHPAD_SETTLE_DELAY)

        for attempt in range(COMMIT_ATTEMPTS):
            if not dispatcher.acquire_bus(EEPROM_RESET_RETRY_DELAY, recover=False):
                # The pack often misses the presence pulse mid-program; commit anyway
                logger.debug("Commit %d: no presence pulse", attempt + 1)
            dispatcher.read_rom()
            transport.write_bytes(commands.COMMIT)
            clock.sleep(COMMIT_PROGRAM_DELAY)
        return True

    def write_record(self, record: StatusRecord) -> None:
        """Raw write. The caller must already have recomputed the checksums."""
        dispatcher = self._dispatcher
        clock = dispatcher.clock

        logger.info("Writing status record %s", record.hex())
        dispatcher.enter_test_mode()
        clock.sleep(TEST_MODE_DELAY)
        dispatcher.execute(commands.READ_RECORD)
        clock.sleep(TEST_MODE_DELAY)
        self.store(record.to_bytes())
        clock.sleep(STORE_SETTLE_DELAY)
        dispatcher.exit_test_mode()
        clock.sleep(EXIT_TEST_MODE_DELAY)
        dispatcher.power_cycle()
        clock.sleep(RELOAD_DELAY)

    def write_record_safe(self, record: StatusRecord) -> None:
        """Recompute every checksum in ``record``, then write it."""
        record.recompute_checksums()
        self.write_record(record)
