"""Exception taxonomy for the battery protocol engine.

Bus-level errors are recovered inside the dispatcher and normally surface
only as a ``None`` / ``False`` result. The remaining errors are raised to the
caller when a bounded operation has run out of options.
"""

from __future__ import annotations


class BatteryError(Exception):
    """Base class for all protocol engine errors."""


class TransportTimeout(BatteryError):
    """No presence pulse after every bus reset retry, or the bridge link failed."""


class NoResponse(BatteryError):
    """The device answered with the all-0xFF sentinel."""


class ChecksumInvalid(BatteryError):
    """The status record failed nybble checksum verification."""


class CommitUnverified(BatteryError):
    """An EEPROM write completed but the read-back does not show it."""


class UnsupportedOperation(BatteryError):
    """The connected chip family does not implement the requested command."""
