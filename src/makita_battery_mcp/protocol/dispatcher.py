"""Command dispatcher: framing, retries and power-cycle recovery.

Every exchange follows the same shape::

    reset (retry) -> settle -> selector -> [ROM id] -> payload -> response

The controller sometimes stops answering until its supply is cycled, so a
failed presence detect or an all-0xFF reply drops the enable line for a
moment before the failure is reported.

The timing constants below were measured on real packs. Do not shorten them
without hardware validation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import NoResponse, TransportTimeout
from ..models.record import ROM_ID_LENGTH, RomId, StatusRecord
from ..transport.base import Clock, PowerControl, SystemClock, Transport
from . import commands
from .commands import ControlCode, Request, Selector

logger = logging.getLogger(__name__)

SENTINEL = 0xFF
SENTINEL_CHECK_LENGTH = 3

# Presence detect: one attempt plus RESET_RETRIES retries
RESET_RETRIES = 5
RESET_RETRY_DELAY = 0.5
# Idle time between presence pulse and the first command bit
BUS_SETTLE_DELAY = 310e-6
# F0513 needs a gap between single-byte reads
LEGACY_BYTE_DELAY = 90e-6

# Short power cycle that re-arms the bus interface
RECOVERY_OFF_DELAY = 0.2
RECOVERY_ON_DELAY = 0.5
# Long power cycle that forces an EEPROM reload
RELOAD_OFF_DELAY = 2.0
RELOAD_ON_DELAY = 1.0

# The record read is the one exchange worth insisting on
RECORD_READ_ATTEMPTS = 20
MODEL_READ_ATTEMPTS = 10

WARMUP_ROUNDS = 3
WARMUP_POWER_DELAY = 0.2
WARMUP_RESET_DELAY = 0.1
WARMUP_READ_DELAY = 0.05


@dataclass
class Response:
    """Bytes returned by one exchange."""

    data: bytes
    rom: bytes = b""

    def __repr__(self) -> str:
        rom = self.rom.hex(" ") if self.rom else "(none)"
        data = self.data.hex(" ") if self.data else "(empty)"
        return f"Response(rom={rom}, data={data})"


def is_sentinel(data: bytes, length: int = SENTINEL_CHECK_LENGTH) -> bool:
    """True iff the first ``length`` bytes are all 0xFF."""
    return len(data) >= length and all(b == SENTINEL for b in data[:length])


class CommandDispatcher:
    """Frames and sends commands over a ``Transport``.

    Usage::

        dispatcher = CommandDispatcher(bridge, bridge)
        response = dispatcher.execute(commands.READ_CELL_TEMPERATURE)
    """

    def __init__(
        self,
        transport: Transport,
        power: PowerControl,
        clock: Clock | None = None,
    ) -> None:
        self.transport = transport
        self.power = power
        self.clock = clock or SystemClock()

    # Power

    def set_power(self, on: bool) -> None:
        self.power.set_power(on)

    def power_cycle(
        self,
        off_delay: float = RECOVERY_OFF_DELAY,
        on_delay: float = RECOVERY_ON_DELAY,
    ) -> None:
        """Drop the enable line, wait, restore it and wait for the pack to boot."""
        self.set_power(False)
        self.clock.sleep(off_delay)
        self.set_power(True)
        self.clock.sleep(on_delay)

    def reload_power_cycle(self) -> None:
        """Long power cycle that makes the controller reload its EEPROM."""
        self.power_cycle(RELOAD_OFF_DELAY, RELOAD_ON_DELAY)

    # Bus

    def acquire_bus(
        self,
        retry_delay: float = RESET_RETRY_DELAY,
        recover: bool = True,
    ) -> bool:
        """Reset until a presence pulse is seen, then let the bus settle.

        Returns False once every retry is spent; with ``recover`` the pack is
        power cycled first.
        """
        attempt = 0
        while not self.transport.reset():
            if attempt == RESET_RETRIES:
                logger.debug("No presence pulse after %d resets", attempt + 1)
                if recover:
                    self.power_cycle()
                return False
            attempt += 1
            self.clock.sleep(retry_delay)
        self.clock.sleep(BUS_SETTLE_DELAY)
        return True

    def read_rom(self) -> bytes:
        """Address the device with READ_ROM and return its ROM id bytes."""
        self.transport.write_byte(Selector.READ_ROM)
        return self.transport.read_bytes(ROM_ID_LENGTH)

    def transact(self, selector: int, payload: bytes, response_length: int) -> Response:
        """Run one framed exchange.

        Raises:
            TransportTimeout: No device answered the bus reset.
            NoResponse: The reply started with the 0xFF sentinel.
        """
        if not self.acquire_bus():
            raise TransportTimeout("No presence pulse from battery")

        rom = b""
        if selector == Selector.READ_ROM:
            rom = self.read_rom()
        else:
            self.transport.write_byte(selector)
        if payload:
            self.transport.write_bytes(payload)

        data = self.transport.read_bytes(response_length) if response_length else b""

        if response_length >= SENTINEL_CHECK_LENGTH and is_sentinel(data):
            self.power_cycle()
            raise NoResponse(
                f"Sentinel reply to selector 0x{selector:02X} "
                f"payload {payload.hex(' ') or '(empty)'}"
            )
        return Response(data=data, rom=rom)

    def send_command(
        self,
        selector: int,
        payload: bytes,
        response_length: int,
    ) -> Response | None:
        """Like :meth:`transact` but returns ``None`` instead of raising."""
        try:
            return self.transact(selector, payload, response_length)
        except (TransportTimeout, NoResponse) as e:
            logger.debug("Command failed: %s", e)
            return None

    def execute(self, request: Request) -> Response | None:
        return self.send_command(request.selector, request.payload, request.response_length)

    def query(self, request: Request) -> bytes:
        """Return the response data, or sentinel bytes if the exchange failed."""
        response = self.execute(request)
        if response is None:
            return bytes([SENTINEL]) * request.response_length
        return response.data

    def execute_with_retries(self, request: Request, attempts: int) -> Response | None:
        for attempt in range(attempts):
            response = self.execute(request)
            if response is not None:
                return response
            logger.debug("Attempt %d/%d failed for %r", attempt + 1, attempts, request)
        return None

    # Standard exchanges

    def read_record(
        self,
        attempts: int = RECORD_READ_ATTEMPTS,
    ) -> tuple[RomId, StatusRecord] | None:
        """Read the ROM id and status record through the retrying path."""
        response = self.execute_with_retries(commands.READ_RECORD, attempts)
        if response is None:
            logger.warning("Status record read failed after %d attempts", attempts)
            return None
        return RomId(response.rom), StatusRecord.from_bytes(response.data)

    def is_battery_locked(self) -> bool:
        """Fail-closed lock check: an unreadable record counts as locked."""
        result = self.read_record()
        if result is None:
            return True
        _, record = result
        return record.is_locked

    def read_model(self) -> bytes | None:
        response = self.execute_with_retries(commands.READ_MODEL, MODEL_READ_ATTEMPTS)
        return response.data if response else None

    def enter_test_mode(self) -> None:
        self.execute(commands.ENTER_TEST_MODE)

    def exit_test_mode(self) -> None:
        self.execute(commands.EXIT_TEST_MODE)

    def send_control(self, code: ControlCode) -> None:
        self.execute(commands.build_control(code))

    def reset_errors(self) -> None:
        self.send_control(ControlCode.RESET_ERRORS)

    def legacy_query(self, opcode: int) -> bytes:
        """Two-byte query in the F0513 second command tree.

        The first byte of a standard chip's reply pair is sentinel, as is the
        whole pair when the bus cannot be driven.
        """
        self.execute(commands.LEGACY_SECOND_TREE)
        try:
            self.transport.reset()
            self.clock.sleep(BUS_SETTLE_DELAY)
            self.transport.write_byte(opcode)
            self.clock.sleep(LEGACY_BYTE_DELAY)
            first = self.transport.read_byte()
            self.clock.sleep(LEGACY_BYTE_DELAY)
            second = self.transport.read_byte()
        except TransportTimeout as e:
            logger.debug("Legacy query 0x%02X failed: %s", opcode, e)
            return bytes([SENTINEL, SENTINEL])
        return bytes([first, second])

    def warm_up(self) -> None:
        """Wake the pack and let the bus settle before real reads."""
        self.power_cycle()
        self.clock.sleep(WARMUP_POWER_DELAY)
        for _ in range(WARMUP_ROUNDS):
            self.transport.reset()
            self.clock.sleep(WARMUP_RESET_DELAY)
            self.execute(commands.READ_CELL_TEMPERATURE)
            self.clock.sleep(WARMUP_READ_DELAY)
        self.transport.reset()
        self.clock.sleep(WARMUP_RESET_DELAY)
