"""Capability interfaces consumed by the protocol engine.

The engine never touches hardware directly. It drives a ``Transport`` for
bus primitives, a ``PowerControl`` for the pack enable line and a ``Clock``
for every protocol delay, so the same code runs against the USB bridge, a
simulated bus, or a mock.
"""

from __future__ import annotations

import time
from typing import Protocol


class Transport(Protocol):
    """Single-wire bus primitives.

    Implementations raise ``TransportTimeout`` when the link to the bus
    itself fails.
    """

    def reset(self) -> bool:
        """Issue a reset pulse; return True iff a presence pulse was seen."""
        ...

    def write_bit(self, bit: int) -> None: ...

    def read_bit(self) -> int: ...

    def write_byte(self, value: int) -> None: ...

    def read_byte(self) -> int: ...

    def write_bytes(self, data: bytes) -> None: ...

    def read_bytes(self, count: int) -> bytes: ...


class PowerControl(Protocol):
    """The pack enable line. Consecutive calls assume it keeps the last value set."""

    def set_power(self, on: bool) -> None: ...


class Clock(Protocol):
    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Blocking wall-clock delays."""

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)
