"""Direct purge volume, flow rate and time (Table B13)."""

from __future__ import annotations

from typing import Iterable, Optional
import logging
import math

from .errors import ValidationError
from .models import PurgeConduit, PurgeSpec, normalize_purge_direction
from .tables import DEFAULT_TABLES, StandardTables, lookup_purge_row

logger = logging.getLogger(__name__)

PURGE_VOLUME_FACTOR = 1.5
# minimum gas velocity in the largest pipe (IGE/UP/1) where Table B13 stops
PURGE_VELOCITY_M_S = 0.25
GAS_CONTENT_LIMITS = {
    "air_to_gas": 90.0,   # gas content must reach at least this
    "gas_to_air": 1.8,    # gas content must fall to at most this
}


def conduit_volume(conduits: Iterable[Optional[PurgeConduit]]) -> float:
    """Σ π (d/2)² L over configured hose/stack (m³; d in mm, L in m)."""
    total = 0.0
    for c in conduits:
        if c is None:
            continue
        radius_m = c.diameter_mm / 1000.0 / 2.0
        total += math.pi * radius_m ** 2 * c.length_m
    return total


def velocity_flow_rate(diameter_mm: float, velocity_m_s: float = PURGE_VELOCITY_M_S) -> float:
    """Flow (m³/h) that moves gas at ``velocity_m_s`` through a bore of ``diameter_mm``."""
    radius_m = diameter_mm / 1000.0 / 2.0
    return math.pi * radius_m ** 2 * velocity_m_s * 3600.0


def format_mmss(seconds: float) -> str:
    """``125.4`` -> ``"02:05"``; minutes are not wrapped at 60."""
    mins, secs = divmod(int(round(seconds)), 60)
    return f"{mins:02d}:{secs:02d}"


def compute_purge(iv: float,
                  hose: PurgeConduit | None = None,
                  stack: PurgeConduit | None = None,
                  largest_pipe_diameter: float | None = None,
                  *,
                  purge_direction: str = "air_to_gas",
                  tables: StandardTables | None = None,
                  velocity_m_s: float | None = None) -> PurgeSpec:
    """Resolve the purge envelope for an installation.

    The minimum flow rate is read from the first Table B13 diameter that is
    >= the largest of the pipe, hose and stack diameters. When
    ``velocity_m_s`` is given (industrial work), diameters beyond the last
    B13 row are sized for that velocity in the largest bore instead, with
    the fitting sizes of the last row.
    """
    tables = tables or DEFAULT_TABLES
    try:
        iv = float(iv)
    except (TypeError, ValueError):
        raise ValidationError(f"Installation volume must be a number, got {iv!r}") from None
    if not (math.isfinite(iv) and iv > 0):
        raise ValidationError(f"Installation volume must be > 0 m³, got {iv}")
    direction = normalize_purge_direction(purge_direction)

    diameters = [c.diameter_mm for c in (hose, stack) if c is not None]
    if largest_pipe_diameter is not None:
        d = float(largest_pipe_diameter)
        if not (math.isfinite(d) and d > 0):
            raise ValidationError(f"Largest pipe diameter must be > 0 mm, got {largest_pipe_diameter!r}")
        diameters.append(d)
    if not diameters:
        raise ValidationError("A largest pipe diameter is required to size the purge")
    largest = max(diameters)

    last = tables.purge_rows[-1]
    if velocity_m_s is not None and round(largest, 9) > last.diameter_mm:
        row = last._replace(diameter_mm=largest, flow_rate_m3h=velocity_flow_rate(largest, velocity_m_s))
        flow_source = f"{velocity_m_s:g} m/s in {largest:g} mm bore"
    else:
        row = lookup_purge_row(tables, largest)
        flow_source = "Table B13"
    extra = conduit_volume((hose, stack))
    pv = (iv + extra) * PURGE_VOLUME_FACTOR
    max_time_s = pv * 3600.0 / row.flow_rate_m3h
    spec = PurgeSpec(
        installation_volume_m3=iv,
        conduit_volume_m3=extra,
        purge_volume_m3=pv,
        largest_diameter_mm=largest,
        table_diameter_mm=float(row.diameter_mm),
        minimum_flow_rate_m3h=float(row.flow_rate_m3h),
        max_purge_time_s=max_time_s,
        max_purge_time=format_mmss(max_time_s),
        purge_direction=direction,
        gas_content_limit_pct=GAS_CONTENT_LIMITS[direction],
        purge_point_mm=float(row.purge_point_mm),
        hose_vent_stack_mm=float(row.hose_vent_stack_mm),
        flame_arrestor_mm=float(row.flame_arrestor_mm),
        flow_source=flow_source,
    )
    logger.debug("Purge: largest %.0f mm -> %s %.2f m³/h, PV %.4f m³, %s",
                 largest, flow_source, row.flow_rate_m3h, pv, spec.max_purge_time)
    return spec
