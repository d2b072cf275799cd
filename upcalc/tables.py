"""Reference tables from IGE/UP/1 and IGE/UP/1A.

All tables are immutable: tuples, read-only numpy arrays and
``MappingProxyType`` views. An edition of the standard is represented by a
:class:`StandardTables` bundle; :data:`DEFAULT_TABLES` holds the current one
and :mod:`upcalc.profiles` can load overrides from JSON.

Band lookups follow the standard's "first row whose bound is >= value"
rule via ``np.searchsorted(..., side="left")``. Values are rounded to nine
decimals first so that e.g. ``0.1 * 3`` lands in the 0.30 band.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, NamedTuple, Sequence
import logging

import numpy as np
import pandas as pd

from .errors import LookupGap, ValidationError

logger = logging.getLogger(__name__)

_ROUND = 9


def freeze_mapping(d: Mapping) -> Mapping:
    return MappingProxyType({k: (freeze_mapping(v) if isinstance(v, Mapping) else v) for k, v in d.items()})


def _readonly(values, dtype=float) -> np.ndarray:
    arr = np.array(values, dtype=dtype)
    arr.setflags(write=False)
    return arr


# Internal volume per metre of pipe (m³/m), keyed by material then nominal
# size in mm. The commercial tables stop at 150 mm steel / 67 mm copper.
COMMERCIAL_PIPE_VOLUMES: Mapping[str, Mapping[str, float]] = freeze_mapping({
    "steel": {
        "15": 0.00024, "20": 0.00046, "25": 0.00064, "32": 0.0011,
        "40": 0.0015, "50": 0.0024, "65": 0.0038, "80": 0.0054,
        "100": 0.009, "125": 0.014, "150": 0.02,
    },
    "copper": {
        "15": 0.00014, "22": 0.00032, "28": 0.00054, "35": 0.00084,
        "42": 0.0012, "54": 0.0021, "67": 0.0033,
    },
})

INDUSTRIAL_PIPE_VOLUMES: Mapping[str, Mapping[str, float]] = freeze_mapping({
    "steel": {
        **COMMERCIAL_PIPE_VOLUMES["steel"],
        "200": 0.035, "250": 0.053, "300": 0.074,
    },
    "copper": {
        **COMMERCIAL_PIPE_VOLUMES["copper"],
        "76": 0.0042, "108": 0.0084, "133": 0.013, "159": 0.018,
    },
})

# Internal volume per meter unit (m³).
INDUSTRIAL_METER_VOLUMES: Mapping[str, float] = freeze_mapping({
    "none": 0.0,
    "G4/U6": 0.008,
    "U16": 0.025,
    "U25": 0.037,
    "U40": 0.067,
    "U65": 0.100,
    "U100": 0.182,
    "U160": 0.304,
})

COMMERCIAL_METER_VOLUMES: Mapping[str, float] = freeze_mapping({
    "none": 0.0,
    "Domestic": 0.0024,
    **{k: v for k, v in INDUSTRIAL_METER_VOLUMES.items() if k != "none"},
})


class PurgeRow(NamedTuple):
    """One row of Table B13 (direct purge parameters)."""

    diameter_mm: float
    flow_rate_m3h: float
    purge_point_mm: float
    hose_vent_stack_mm: float
    flame_arrestor_mm: float


PURGE_TABLE: tuple[PurgeRow, ...] = (
    PurgeRow(20, 0.7, 20, 20, 20),
    PurgeRow(25, 1.0, 20, 20, 20),
    PurgeRow(32, 1.7, 20, 20, 20),
    PurgeRow(40, 2.5, 20, 20, 20),
    PurgeRow(50, 4.5, 25, 40, 50),
    PurgeRow(80, 11.0, 25, 40, 50),
    PurgeRow(100, 20.0, 25, 40, 50),
    PurgeRow(125, 30.0, 40, 50, 50),
    PurgeRow(150, 38.0, 40, 50, 50),
)

# Commercial tightness: maximum permissible pressure drop (mbar) by
# installation-volume band (rows) and room volume (columns).
DROP_IV_BANDS: tuple[float, ...] = tuple(round(0.15 + 0.05 * i, 2) for i in range(18))
DROP_ROOM_VOLUMES: tuple[float, ...] = tuple(float(v) for v in [*range(10, 31), *range(35, 61, 5)])
DROP_TABLE: tuple[tuple[float, ...], ...] = (
    (0.7, 0.8, 0.8, 0.9, 1, 1, 1.1, 1.2, 1.2, 1.3, 1.4, 1.4, 1.5, 1.6, 1.7, 1.7, 1.8, 1.8, 1.9, 2, 2.1, 2.4, 2.8, 3.1, 3.5, 3.9, 4.2),
    (0.7, 0.8, 0.9, 0.9, 0.9, 1, 1.1, 1.2, 1.2, 1.3, 1.4, 1.4, 1.5, 1.6, 1.7, 1.7, 1.7, 1.8, 1.8, 1.9, 2.1, 2.3, 2.8, 3, 3.4, 3.8, 4.1),
    (0.7, 0.7, 0.8, 0.9, 0.9, 0.9, 1, 1.1, 1.2, 1.3, 1.3, 1.4, 1.4, 1.5, 1.6, 1.7, 1.7, 1.7, 1.8, 1.8, 2, 2.2, 2.7, 2.9, 3.3, 3.7, 4.0),
    (0.7, 0.7, 0.8, 0.9, 0.9, 0.9, 1, 1.1, 1.2, 1.2, 1.3, 1.3, 1.4, 1.5, 1.6, 1.6, 1.7, 1.7, 1.8, 1.8, 2, 2.1, 2.7, 2.9, 3.2, 3.6, 3.9),
    (0.7, 0.7, 0.8, 0.9, 0.9, 0.9, 1, 1.1, 1.2, 1.2, 1.3, 1.3, 1.4, 1.5, 1.6, 1.6, 1.6, 1.7, 1.7, 1.8, 1.9, 2.1, 2.6, 2.8, 3.2, 3.6, 3.9),
    (0.6, 0.7, 0.8, 0.8, 0.8, 0.9, 1, 1, 1.1, 1.2, 1.3, 1.3, 1.5, 1.5, 1.5, 1.6, 1.6, 1.7, 1.7, 1.8, 1.9, 2, 2.6, 2.8, 3.1, 3.5, 3.8),
    (0.6, 0.7, 0.7, 0.8, 0.8, 0.9, 1, 1, 1.1, 1.2, 1.3, 1.3, 1.3, 1.4, 1.5, 1.5, 1.6, 1.7, 1.7, 1.8, 1.9, 2, 2.5, 2.7, 3.1, 3.4, 3.7),
    (0.6, 0.7, 0.7, 0.8, 0.8, 0.9, 1, 1, 1.1, 1.2, 1.2, 1.3, 1.3, 1.4, 1.5, 1.5, 1.5, 1.6, 1.7, 1.7, 1.9, 2, 2.5, 2.7, 3, 3.4, 3.7),
    (0.6, 0.6, 0.7, 0.8, 0.8, 0.9, 1, 1, 1.1, 1.1, 1.2, 1.2, 1.3, 1.4, 1.5, 1.5, 1.5, 1.6, 1.6, 1.7, 1.8, 2, 2.4, 2.6, 3, 3.3, 3.6),
    (0.6, 0.6, 0.7, 0.7, 0.8, 0.8, 0.9, 1, 1.1, 1.1, 1.2, 1.2, 1.3, 1.4, 1.4, 1.5, 1.5, 1.6, 1.6, 1.7, 1.8, 1.9, 2.4, 2.6, 3, 3.3, 3.6),
    (0.6, 0.6, 0.7, 0.7, 0.8, 0.8, 0.9, 1, 1.1, 1.1, 1.2, 1.2, 1.3, 1.4, 1.4, 1.4, 1.5, 1.5, 1.6, 1.7, 1.8, 1.9, 2.3, 2.5, 2.9, 3.2, 3.5),
    (0.5, 0.6, 0.7, 0.7, 0.8, 0.8, 0.9, 1, 1, 1.1, 1.2, 1.2, 1.2, 1.3, 1.4, 1.4, 1.5, 1.5, 1.6, 1.6, 1.7, 1.9, 2.3, 2.5, 2.9, 3.2, 3.5),
    (0.5, 0.6, 0.6, 0.7, 0.8, 0.8, 0.9, 0.9, 1, 1.1, 1.1, 1.1, 1.2, 1.3, 1.3, 1.4, 1.4, 1.5, 1.5, 1.6, 1.7, 1.9, 2.2, 2.4, 2.9, 3.1, 3.4),
    (0.5, 0.5, 0.6, 0.7, 0.8, 0.8, 0.9, 0.9, 1, 1.1, 1.1, 1.1, 1.2, 1.3, 1.3, 1.4, 1.4, 1.5, 1.5, 1.6, 1.7, 1.9, 2.2, 2.4, 2.8, 3.1, 3.3),
    (0.5, 0.5, 0.6, 0.6, 0.7, 0.8, 0.8, 0.9, 1, 1, 1.1, 1.1, 1.2, 1.2, 1.3, 1.3, 1.4, 1.4, 1.5, 1.5, 1.6, 1.8, 2.1, 2.3, 2.8, 3, 3.2),
    (0.5, 0.5, 0.6, 0.6, 0.7, 0.7, 0.8, 0.9, 0.9, 1, 1, 1.1, 1.1, 1.2, 1.2, 1.3, 1.3, 1.4, 1.5, 1.5, 1.6, 1.8, 2.1, 2.3, 2.6, 3, 3.1),
    (0.5, 0.5, 0.6, 0.6, 0.7, 0.7, 0.8, 0.9, 0.9, 1, 1, 1, 1.1, 1.2, 1.2, 1.3, 1.3, 1.4, 1.4, 1.5, 1.6, 1.8, 2, 2.2, 2.6, 2.9, 3.1),
    (0.5, 0.5, 0.6, 0.6, 0.7, 0.7, 0.8, 0.8, 0.9, 0.9, 1, 1, 1.1, 1.1, 1.2, 1.2, 1.3, 1.3, 1.4, 1.4, 1.5, 1.7, 2, 2.2, 2.5, 2.8, 3.0),
)


# Commercial Table 6, new installations: (max IV m³, minutes at 0.5 mbar
# gauge, minutes at 0.1 mbar gauge). IV above the last row uses that row.
NEW_INSTALLATION_DURATIONS: tuple[tuple[float, int, int], ...] = (
    (0.06, 2, 2),
    (0.09, 3, 2),
    (0.12, 4, 2),
    (0.15, 5, 2),
    (0.18, 6, 2),
    (0.21, 7, 2),
    (0.24, 8, 2),
    (0.27, 9, 2),
    (0.30, 10, 2),
    (0.33, 11, 3),
    (0.36, 12, 3),
    (0.39, 13, 3),
    (0.42, 14, 3),
    (0.45, 15, 3),
    (0.48, 16, 4),
    (0.51, 17, 4),
    (0.54, 18, 4),
    (0.57, 19, 4),
    (0.60, 20, 4),
    (0.63, 21, 5),
    (0.66, 22, 5),
    (0.69, 23, 5),
    (0.72, 24, 5),
    (0.75, 25, 5),
    (0.78, 26, 6),
    (0.81, 27, 6),
    (0.84, 28, 6),
    (0.87, 29, 6),
    (0.90, 30, 6),
    (0.93, 30, 7),
    (0.96, 30, 7),
)

# Commercial Table 7, existing installations: (max IV m³, minutes with air,
# minutes with gas).
EXISTING_INSTALLATION_DURATIONS: tuple[tuple[float, int, int], ...] = (
    (0.15, 2, 2),
    (0.30, 3, 2),
    (0.45, 5, 3),
    (0.60, 6, 4),
    (0.75, 8, 5),
    (0.90, 9, 6),
    (1.00, 10, 6),
)

# Commercial let-by test duration: (max IV m³, minutes).
LET_BY_DURATIONS: tuple[tuple[float, int], ...] = ((0.5, 2), (0.8, 3), (1.0, 4))

# TTD factor F1 by test medium.
F1_FACTORS: Mapping[str, float] = freeze_mapping({"air": 67.0, "gas": 42.0})
# Leakage-rate factor F3 by test medium.
F3_FACTORS: Mapping[str, float] = freeze_mapping({"air": 0.094, "gas": 0.059})
# Maximum permitted leak rate (m³/h) by zone then installation type.
MPLR: Mapping[str, Mapping[str, float]] = freeze_mapping({
    "Type A": {"new": 0.0014, "existing": 0.0028},
    "Type B": {"new": 0.0056, "existing": 0.0084},
    "Type C": {"new": 0.0070, "existing": 0.0140},
})


def _check_bounds(name: str, bounds: np.ndarray) -> None:
    if bounds.ndim != 1 or bounds.size == 0:
        raise ValidationError(f"{name}: expected a non-empty list of bounds")
    if np.any(np.diff(bounds) <= 0):
        raise ValidationError(f"{name}: bounds must be strictly increasing")


@dataclass(frozen=True, eq=False)
class StandardTables:
    """One edition of the shared reference tables."""

    edition: str = "IGE/UP/1 Ed.2 + IGE/UP/1A Ed.2"
    purge_rows: tuple[PurgeRow, ...] = PURGE_TABLE
    drop_iv_bands: np.ndarray = field(default_factory=lambda: _readonly(DROP_IV_BANDS))
    drop_room_volumes: np.ndarray = field(default_factory=lambda: _readonly(DROP_ROOM_VOLUMES))
    drop_values: np.ndarray = field(default_factory=lambda: _readonly(DROP_TABLE))
    new_durations: tuple[tuple[float, int, int], ...] = NEW_INSTALLATION_DURATIONS
    existing_durations: tuple[tuple[float, int, int], ...] = EXISTING_INSTALLATION_DURATIONS
    let_by_durations: tuple[tuple[float, int], ...] = LET_BY_DURATIONS
    f1: Mapping[str, float] = field(default_factory=lambda: F1_FACTORS)
    f3: Mapping[str, float] = field(default_factory=lambda: F3_FACTORS)
    mplr: Mapping[str, Mapping[str, float]] = field(default_factory=lambda: MPLR)

    def __post_init__(self):
        for name in ("drop_iv_bands", "drop_room_volumes", "drop_values"):
            arr = getattr(self, name)
            if not isinstance(arr, np.ndarray) or arr.flags.writeable:
                object.__setattr__(self, name, _readonly(arr))
        _check_bounds("drop_iv_bands", self.drop_iv_bands)
        _check_bounds("drop_room_volumes", self.drop_room_volumes)
        expected = (self.drop_iv_bands.size, self.drop_room_volumes.size)
        if self.drop_values.shape != expected:
            raise ValidationError(
                f"drop_values: expected shape {expected}, got {self.drop_values.shape}"
            )
        _check_bounds("purge diameters", np.array([r.diameter_mm for r in self.purge_rows], dtype=float))
        _check_bounds("new_durations", np.array([r[0] for r in self.new_durations], dtype=float))
        _check_bounds("existing_durations", np.array([r[0] for r in self.existing_durations], dtype=float))
        _check_bounds("let_by_durations", np.array([r[0] for r in self.let_by_durations], dtype=float))


DEFAULT_TABLES = StandardTables()


def _first_at_least(bounds: Sequence[float] | np.ndarray, value: float) -> int:
    """Index of the first bound >= value (``len(bounds)`` if none)."""
    arr = np.asarray(bounds, dtype=float)
    return int(np.searchsorted(arr, round(float(value), _ROUND), side="left"))


def lookup_max_drop(tables: StandardTables, iv: float, room_volume: float) -> tuple[float, float, float]:
    """Return ``(max_drop_mbar, iv_band, room_volume_column)``.

    The row is the smallest IV band whose upper bound is >= ``iv``. The
    column is the smallest room-volume bucket >= ``room_volume``, clamped to
    the first/last bucket outside the table's range.
    """
    row = _first_at_least(tables.drop_iv_bands, iv)
    if row >= tables.drop_iv_bands.size:
        raise LookupGap(
            f"Installation volume {iv:g} m³ is above the last pressure-drop band "
            f"({tables.drop_iv_bands[-1]:g} m³)"
        )
    col = min(_first_at_least(tables.drop_room_volumes, room_volume), tables.drop_room_volumes.size - 1)
    value = float(tables.drop_values[row, col])
    logger.debug("Drop table: IV %.4f -> band %.2f, RV %.2f -> column %g: %.2f mbar",
                 iv, tables.drop_iv_bands[row], room_volume, tables.drop_room_volumes[col], value)
    return value, float(tables.drop_iv_bands[row]), float(tables.drop_room_volumes[col])


def lookup_new_installation_minutes(tables: StandardTables, iv: float, grm: float) -> int:
    """Table 6 duration; IV above the last row maps to the last row."""
    rows = tables.new_durations
    idx = min(_first_at_least([r[0] for r in rows], iv), len(rows) - 1)
    max_iv, at_0p5, at_0p1 = rows[idx]
    return int(at_0p1 if grm < 0.5 else at_0p5)


def lookup_existing_installation_minutes(tables: StandardTables, iv: float, medium: str) -> int:
    """Table 7 duration by test medium."""
    rows = tables.existing_durations
    idx = _first_at_least([r[0] for r in rows], iv)
    if idx >= len(rows):
        raise LookupGap(
            f"Installation volume {iv:g} m³ is above the existing-installation "
            f"duration table ({rows[-1][0]:g} m³)"
        )
    _, air, gas = rows[idx]
    return int(air if medium == "air" else gas)


def lookup_let_by_minutes(tables: StandardTables, iv: float) -> int:
    rows = tables.let_by_durations
    idx = _first_at_least([r[0] for r in rows], iv)
    if idx >= len(rows):
        raise LookupGap(f"Installation volume {iv:g} m³ is above the let-by duration table ({rows[-1][0]:g} m³)")
    return int(rows[idx][1])


def lookup_purge_row(tables: StandardTables, diameter_mm: float) -> PurgeRow:
    """First Table B13 row whose diameter is >= ``diameter_mm`` (always rounds up)."""
    rows = tables.purge_rows
    idx = _first_at_least([r.diameter_mm for r in rows], diameter_mm)
    if idx >= len(rows):
        raise LookupGap(
            f"Diameter {diameter_mm:g} mm is above the purge table ({rows[-1].diameter_mm:g} mm)"
        )
    return rows[idx]


def tables_to_frames(tables: StandardTables,
                     pipe_volumes: Mapping[str, Mapping[str, float]] | None = None,
                     meter_volumes: Mapping[str, float] | None = None) -> dict[str, pd.DataFrame]:
    """Tabulate an edition for export (one DataFrame per table)."""
    frames: dict[str, pd.DataFrame] = {
        "purge_flow": pd.DataFrame([r._asdict() for r in tables.purge_rows]),
        "tightness_drop": pd.DataFrame(
            tables.drop_values,
            index=pd.Index(tables.drop_iv_bands, name="iv_band_m3"),
            columns=[f"{v:g}" for v in tables.drop_room_volumes],
        ).reset_index(),
        "new_durations": pd.DataFrame(tables.new_durations, columns=["max_iv_m3", "minutes_grm_0.5", "minutes_grm_0.1"]),
        "existing_durations": pd.DataFrame(tables.existing_durations, columns=["max_iv_m3", "minutes_air", "minutes_gas"]),
        "let_by_durations": pd.DataFrame(tables.let_by_durations, columns=["max_iv_m3", "minutes"]),
    }
    if pipe_volumes is not None:
        frames["pipe_volumes"] = pd.DataFrame(
            [
                {"material": mat, "size_mm": size, "volume_m3_per_m": vol}
                for mat, sizes in pipe_volumes.items()
                for size, vol in sizes.items()
            ]
        )
    if meter_volumes is not None:
        frames["meter_volumes"] = pd.DataFrame(
            [{"meter_type": k, "volume_m3": v} for k, v in meter_volumes.items()]
        )
    return frames
