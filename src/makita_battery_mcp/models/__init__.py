"""Data models for the ROM id, status record and decoded battery state."""

from .record import RomId, StatusRecord
from .battery import (
    BatteryData,
    Chemistry,
    ChipFamily,
    HealthInfo,
    VoltageInfo,
)
