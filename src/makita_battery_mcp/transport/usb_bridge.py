"""USB HID bridge that drives the battery's single-wire bus.

The bridge is a small microcontroller that performs the bit-level bus timing
and switches the pack enable line. It enumerates as a generic HID device and
exchanges 64-byte reports framed by :mod:`.framing`.

Supports both ``hidapi`` (preferred) and ``pyusb`` backends.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import TransportTimeout
from .framing import (
    HID_REPORT_SIZE,
    MAX_PAYLOAD_PER_FRAME,
    BridgeCommand,
    Frame,
    build_frame,
    parse_frame,
)

logger = logging.getLogger(__name__)

VENDOR_ID = 0x16C0
PRODUCT_ID = 0x05DF
HID_INTERFACE = 0
EP_IN = 0x81
EP_OUT = 0x01
READ_TIMEOUT_MS = 1000


@dataclass
class DeviceInfo:
    """Basic bridge identification from USB descriptors."""

    vendor_id: int = VENDOR_ID
    product_id: int = PRODUCT_ID
    manufacturer: str = ""
    product: str = ""


class USBBridge:
    """USB connection to the single-wire bridge.

    Implements both the ``Transport`` and ``PowerControl`` capabilities.

    Usage::

        bridge = USBBridge()
        bridge.open()
        present = bridge.reset()
        bridge.write_byte(0xCC)
        data = bridge.read_bytes(3)
        bridge.close()
    """

    def __init__(
        self,
        vendor_id: int = VENDOR_ID,
        product_id: int = PRODUCT_ID,
    ) -> None:
        self._vendor_id = vendor_id
        self._product_id = product_id
        self._device = None
        self._backend: str = ""
        self._connected = False
        self._device_info = DeviceInfo(vendor_id=vendor_id, product_id=product_id)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    def open(self) -> DeviceInfo:
        """Open the bridge, trying hidapi first, then pyusb.

        Raises:
            ConnectionError: If neither backend can open the bridge.
        """
        last_error: Exception | None = None
        for backend, opener in (("hidapi", self._open_hidapi), ("pyusb", self._open_pyusb)):
            try:
                device, manufacturer, product = opener()
            except Exception as e:
                logger.debug("%s backend failed: %s", backend, e)
                last_error = e
                continue

            self._device = device
            self._backend = backend
            self._connected = True
            self._device_info = DeviceInfo(
                self._vendor_id, self._product_id, manufacturer or "", product or ""
            )
            logger.info("Bridge open via %s: %s", backend, product)
            return self._device_info

        raise ConnectionError(
            f"Could not open single-wire bridge {self._vendor_id:#06x}:{self._product_id:#06x} "
            f"not available: {last_error}"
        ) from last_error

    def _open_hidapi(self):
        import hid

        device = hid.device()
        device.open(self._vendor_id, self._product_id)
        device.set_nonblocking(False)
        return device, device.get_manufacturer_string(), device.get_product_string()

    def _open_pyusb(self):
        import usb.core
        import usb.util

        dev = usb.core.find(idVendor=self._vendor_id, idProduct=self._product_id)
        if dev is None:
            raise ConnectionError("bridge not enumerated")
        if dev.is_kernel_driver_active(HID_INTERFACE):
            dev.detach_kernel_driver(HID_INTERFACE)
        usb.util.claim_interface(dev, HID_INTERFACE)
        return (
            dev,
            usb.util.get_string(dev, dev.iManufacturer),
            usb.util.get_string(dev, dev.iProduct),
        )

    def close(self) -> None:
        if not self._connected:
            return
        device, backend = self._device, self._backend
        self._device = None
        self._backend = ""
        self._connected = False
        try:
            if backend == "hidapi":
                device.close()
            else:
                import usb.util
                usb.util.release_interface(device, HID_INTERFACE)
        except Exception as e:
            logger.warning("Bridge close failed: %s", e)
        logger.info("Bridge closed")

    def _write_report(self, data: bytes) -> None:
        if not self._connected:
            raise ConnectionError("Not connected to bridge")
        if self._backend == "hidapi":
            self._device.write(data)
        else:
            self._device.write(EP_OUT, data, timeout=READ_TIMEOUT_MS)

    def _read_report(self) -> bytes | None:
        if self._backend == "hidapi":
            data = self._device.read(HID_REPORT_SIZE, READ_TIMEOUT_MS)
        else:
            data = self._device.read(EP_IN, HID_REPORT_SIZE, timeout=READ_TIMEOUT_MS)
        return bytes(data) if data else None

    def request(self, command: BridgeCommand, payload: bytes = b"") -> Frame:
        """Send one bridge command and return its reply frame.

        Raises:
            TransportTimeout: If the report exchange fails or the bridge does
                not answer with a matching frame.
        """
        try:
            self._write_report(build_frame(command, payload))
            report = self._read_report()
        except OSError as e:
            raise TransportTimeout(f"Bridge I/O failed for {command.name}: {e}") from e
        frame = parse_frame(report) if report is not None else None
        if frame is None or frame.command != command:
            raise TransportTimeout(f"No valid reply from bridge for {command.name}")
        return frame

    # Transport

    def reset(self) -> bool:
        frame = self.request(BridgeCommand.RESET)
        return bool(frame.payload) and frame.payload[0] == 1

    def write_bit(self, bit: int) -> None:
        self.request(BridgeCommand.WRITE_BIT, bytes([1 if bit else 0]))

    def read_bit(self) -> int:
        frame = self.request(BridgeCommand.READ_BIT)
        return frame.payload[0] & 0x01 if frame.payload else 1

    def write_byte(self, value: int) -> None:
        self.write_bytes(bytes([value & 0xFF]))

    def read_byte(self) -> int:
        return self.read_bytes(1)[0]

    def write_bytes(self, data: bytes) -> None:
        for offset in range(0, len(data), MAX_PAYLOAD_PER_FRAME):
            self.request(
                BridgeCommand.WRITE_BYTES,
                bytes(data[offset : offset + MAX_PAYLOAD_PER_FRAME]),
            )

    def read_bytes(self, count: int) -> bytes:
        result = bytearray()
        while len(result) < count:
            chunk = min(count - len(result), MAX_PAYLOAD_PER_FRAME)
            frame = self.request(BridgeCommand.READ_BYTES, bytes([chunk]))
            # A released bus reads as all ones
            result += frame.payload[:chunk].ljust(chunk, b"\xff")
        return bytes(result)

    # PowerControl

    def set_power(self, on: bool) -> None:
        self.request(BridgeCommand.SET_POWER, bytes([1 if on else 0]))
        logger.debug("Pack power %s", "on" if on else "off")
