"""Transport layer: single-wire bus capabilities and the USB bridge adapter."""

from .base import Clock, PowerControl, SystemClock, Transport
