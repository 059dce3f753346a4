"""Decoded battery state and the per-session data cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .record import RomId, StatusRecord

FIVE_CELL_COUNT = 5
TEN_CELL_COUNT = 10


class ChipFamily(Enum):
    """Controller generation."""

    STANDARD = "standard"
    LEGACY = "legacy"  # F0513: no test mode, LED or error-reset commands


class Chemistry(Enum):
    """Pack cell configuration."""

    FIVE_CELL = "5-cell"
    TEN_CELL = "10-cell"
    UNKNOWN = "unknown"


@dataclass
class VoltageInfo:
    """Cell voltages (V) with derived spread, pack total and temperatures (°C).

    A temperature of ``None`` means the device did not report one.
    """

    cells: list[float]
    spread: float
    pack_total: float
    cell_temperature: float | None = None
    mosfet_temperature: float | None = None

    @classmethod
    def from_cells(
        cls,
        cells: list[float],
        cell_temperature: float | None = None,
        mosfet_temperature: float | None = None,
    ) -> VoltageInfo:
        return cls(
            cells=list(cells),
            spread=max(cells) - min(cells),
            pack_total=sum(cells),
            cell_temperature=cell_temperature,
            mosfet_temperature=mosfet_temperature,
        )

    @property
    def min_cell(self) -> float:
        """Lowest cell voltage across the whole pack."""
        return min(self.cells)

    def to_vector(self) -> list[float | None]:
        """Nine-slot view: five cells, spread, pack total, cell and MOSFET temperature."""
        return self.cells[:FIVE_CELL_COUNT] + [
            self.spread,
            self.pack_total,
            self.cell_temperature,
            self.mosfet_temperature,
        ]

    def to_dict(self) -> dict:
        return {
            "cells": [round(v, 3) for v in self.cells],
            "spread": round(self.spread, 3),
            "pack_total": round(self.pack_total, 2),
            "cell_temperature": _round_or_none(self.cell_temperature),
            "mosfet_temperature": _round_or_none(self.mosfet_temperature),
        }


@dataclass
class HealthInfo:
    """Wear percentages and where they came from (``bms`` or ``estimate``)."""

    overload: int
    overdischarge: int
    health: int
    source: str

    def to_dict(self) -> dict:
        return {
            "overload": self.overload,
            "overdischarge": self.overdischarge,
            "health": self.health,
            "source": self.source,
        }


@dataclass
class BatteryData:
    """Snapshot of the last successful read.

    Cleared at the start of every read cycle and marked valid only once the
    read has finished, so it is never observed half-written.
    """

    rom: RomId | None = None
    record: StatusRecord | None = None
    voltages: VoltageInfo | None = None
    valid: bool = False
    is_bl36: bool = False
    cell_count: int = 0

    @property
    def chemistry(self) -> Chemistry:
        if self.cell_count == FIVE_CELL_COUNT:
            return Chemistry.FIVE_CELL
        if self.cell_count == TEN_CELL_COUNT:
            return Chemistry.TEN_CELL
        return Chemistry.UNKNOWN

    def clear(self) -> None:
        self.rom = None
        self.record = None
        self.voltages = None
        self.valid = False
        self.is_bl36 = False
        self.cell_count = 0

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "rom": self.rom.hex() if self.rom else None,
            "record": self.record.hex() if self.record else None,
            "chemistry": self.chemistry.value,
            "cell_count": self.cell_count,
            "is_bl36": self.is_bl36,
            "voltages": self.voltages.to_dict() if self.voltages else None,
        }


def _round_or_none(value: float | None, digits: int = 1) -> float | None:
    return None if value is None else round(value, digits)
