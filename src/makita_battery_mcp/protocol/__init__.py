"""Protocol layer: command table, dispatcher, checksums, decoders and EEPROM writes."""

from .checksum import recompute, swap_nibbles, verify
from .commands import ControlCode, Request, Selector
