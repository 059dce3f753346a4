"""MCP server entry point for the Makita battery protocol engine.

Exposes tools and resources via the Model Context Protocol using the
official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .errors import BatteryError
from .session import BatterySession, describe_diff
from .transport.usb_bridge import PRODUCT_ID, VENDOR_ID, USBBridge
from .unlock import FactoryTemplate, LockMode

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "makita-battery",
    instructions="MCP server for reading, diagnosing and unlocking Makita LXT batteries",
)

# Global connection state
_bridge: USBBridge | None = None
_session: BatterySession | None = None


def _get_session() -> BatterySession:
    """Get the active battery session, raising if not connected."""
    if _session is None or _bridge is None or not _bridge.connected:
        raise RuntimeError(
            "Not connected to bridge. Use the 'connect' tool first."
        )
    return _session


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(vendor_id: int = VENDOR_ID, product_id: int = PRODUCT_ID) -> dict[str, Any]:
    """Open the USB single-wire bridge and start a battery session.

    Args:
        vendor_id: Bridge USB vendor ID (default 0x16C0).
        product_id: Bridge USB product ID (default 0x05DF).
    """
    global _bridge, _session
    if _bridge is not None and _bridge.connected:
        return {"connected": True, "message": "Already connected"}

    _bridge = USBBridge(vendor_id, product_id)
    info = _bridge.open()
    _session = BatterySession(_bridge, _bridge)
    _bridge.set_power(True)

    return {
        "connected": True,
        "bridge": info.product,
        "manufacturer": info.manufacturer,
    }


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the USB bridge."""
    global _bridge, _session
    if _bridge is not None:
        _bridge.close()
    _bridge = None
    _session = None
    return {"disconnected": True}


# ─── READ TOOLS ───────────────────────────────────────────────────────

@mcp.tool()
def read_battery() -> dict[str, Any]:
    """Run a full read cycle and return model, status and health.

    Warms the pack up, reads the ROM id and status record, then cell
    voltages and temperatures. The result is cached for the other tools.
    """
    session = _get_session()
    if not session.read_all_battery_data():
        return {"error": "Failed to read battery data. Check connection and try again."}

    result = session.battery_info()
    result["model"] = session.model_name() or "Unknown"
    result["diagnosis"] = session.diagnosis()
    return result


@mcp.tool()
def get_voltages() -> dict[str, Any]:
    """Cell voltages, spread, pack voltage and temperatures from the last read."""
    return _get_session().voltage_report()


@mcp.tool()
def get_raw_dump() -> dict[str, Any]:
    """ROM id, record hex and decoded key fields from the last read."""
    return _get_session().raw_dump()


@mcp.tool()
def check_lock_status() -> dict[str, bool]:
    """Read the record and report whether a charger would refuse the pack."""
    return {"locked": _get_session().is_battery_locked()}


@mcp.tool()
def get_chip_info() -> dict[str, Any]:
    """Report the controller family and hardware health support."""
    session = _get_session()
    return {
        "chip_family": session.chip_family().value,
        "hardware_health": session.has_hardware_health(),
    }


@mcp.tool()
def diagnose_handshake() -> dict[str, Any]:
    """Check every exchange a charger relies on (record, temperatures, data block)."""
    try:
        return _get_session().diagnose_charger_handshake()
    except BatteryError as e:
        return {"error": str(e)}


# ─── RECORD TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def save_record() -> dict[str, Any]:
    """Save the pack's current status record for later compare or clone."""
    try:
        record = _get_session().save_record()
    except BatteryError as e:
        return {"error": str(e)}
    return {
        "saved": True,
        "error_code": record.error_code,
        "cycle_count": record.cycle_count,
    }


@mcp.tool()
def compare_record() -> dict[str, Any]:
    """List the record bytes that changed since the last save."""
    try:
        diff = _get_session().compare_record()
    except (BatteryError, RuntimeError) as e:
        return {"error": str(e)}
    return {"changes": describe_diff(diff), "count": len(diff)}


@mcp.tool()
def clone_record(confirm: bool = False) -> dict[str, Any]:
    """Write the saved record (error cleared) to the connected pack.

    Args:
        confirm: Must be true to write.
    """
    try:
        written = _get_session().clone_record(confirm)
    except (BatteryError, RuntimeError) as e:
        return {"error": str(e)}
    return {"cloned": written}


# ─── RESET TOOLS ──────────────────────────────────────────────────────

@mcp.tool()
def reset_errors() -> dict[str, Any]:
    """Quick error reset: test mode plus error reset, three times."""
    try:
        _get_session().reset_battery_errors()
    except BatteryError as e:
        return {"error": str(e)}
    return {"reset": True}


@mcp.tool()
def unlock_battery() -> dict[str, Any]:
    """Escalating three-phase unlock. Reports the phase reached."""
    try:
        outcome = _get_session().unlock_battery()
    except BatteryError as e:
        return {"error": str(e)}
    return outcome.to_dict()


@mcp.tool()
def set_leds(on: bool) -> dict[str, Any]:
    """Switch the pack's charge LEDs on or off.

    Args:
        on: True for on, False for off.
    """
    try:
        _get_session().set_leds(on)
    except BatteryError as e:
        return {"error": str(e)}
    return {"leds": "on" if on else "off"}


@mcp.tool()
def set_cycle_count(count: int) -> dict[str, Any]:
    """Rewrite the charge cycle counter.

    Args:
        count: New cycle count (0-4095).
    """
    try:
        verified = _get_session().set_cycle_count(count)
    except (BatteryError, ValueError) as e:
        return {"error": str(e)}
    return {"cycle_count": verified}


@mcp.tool()
def factory_reset(template: str = "minimal") -> dict[str, Any]:
    """Rewrite the status record from a template with the error cleared.

    Args:
        template: One of 'minimal', 'c1', 'x94'.
    """
    try:
        unlocked = _get_session().factory_reset(FactoryTemplate(template))
    except (BatteryError, ValueError) as e:
        return {"error": str(e)}
    return {"template": template, "unlocked": unlocked}


@mcp.tool()
def reset_handshake() -> dict[str, Any]:
    """Clear the charger handshake state with power cycles and a record rewrite."""
    try:
        written = _get_session().reset_handshake_state()
    except BatteryError as e:
        return {"error": str(e)}
    return {"record_written": written, "message": "Try the charger now."}


@mcp.tool()
def lock_for_test(mode: str) -> dict[str, Any]:
    """Deliberately lock the pack to test charger behaviour.

    Args:
        mode: One of 'bad_checksum', 'overloaded', 'warning', 'dead'.
    """
    try:
        locked = _get_session().lock_for_test(LockMode(mode))
    except (BatteryError, ValueError) as e:
        return {"error": str(e)}
    if locked is None:
        return {"error": "Read failed"}
    return {"mode": mode, "locked": locked}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("makita://device/info")
def resource_device_info() -> str:
    """Bridge identification and connection state."""
    if _bridge is None or not _bridge.connected:
        return json.dumps({"connected": False})

    info = _bridge.device_info
    return json.dumps({
        "connected": True,
        "manufacturer": info.manufacturer,
        "product": info.product,
        "vendor_id": f"0x{info.vendor_id:04X}",
        "product_id": f"0x{info.product_id:04X}",
    })


@mcp.resource("makita://battery/cache")
def resource_battery_cache() -> str:
    """The cached result of the last read."""
    if _session is None:
        return json.dumps({"valid": False})
    return json.dumps(_session.data.to_dict())


@mcp.resource("makita://battery/saved-record")
def resource_saved_record() -> str:
    """The saved status record, if any."""
    if _session is None or _session.saved_record is None:
        return json.dumps({"saved": False})
    return json.dumps({"saved": True, **_session.saved_record.to_dict()})


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
