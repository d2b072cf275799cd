from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from .errors import ValidationError
from .tables import (
    COMMERCIAL_METER_VOLUMES,
    COMMERCIAL_PIPE_VOLUMES,
    DEFAULT_TABLES,
    INDUSTRIAL_METER_VOLUMES,
    INDUSTRIAL_PIPE_VOLUMES,
    StandardTables,
)


@dataclass(frozen=True, eq=False)
class RegimeProfile:
    """Regime-specific constants for commercial (UP/1A) or industrial (UP/1) work.

    ``volume_ceiling_m3`` is ``None`` when the regime has no upper limit on
    installation volume.
    """

    name: str
    standard: str
    volume_ceiling_m3: float | None
    pipe_volumes: Mapping[str, Mapping[str, float]]
    meter_volumes: Mapping[str, float]
    fittings_allowance: bool = False
    tightness_stabilization_min: float = 6.0
    strength_stabilization_by_mop: bool = False
    strength_duration_min: float = 5.0
    purge_velocity_m_s: float | None = None
    tables: StandardTables = field(default_factory=lambda: DEFAULT_TABLES)


# In a real deployment an edition profile may replace these (see profiles.py).
PRESETS: dict[str, RegimeProfile] = {
    "commercial": RegimeProfile(
        name="commercial",
        standard="IGE/UP/1A",
        volume_ceiling_m3=1.0,
        pipe_volumes=COMMERCIAL_PIPE_VOLUMES,
        meter_volumes=COMMERCIAL_METER_VOLUMES,
        fittings_allowance=True,
        tightness_stabilization_min=6.0,
        strength_stabilization_by_mop=False,
    ),
    "industrial": RegimeProfile(
        name="industrial",
        standard="IGE/UP/1",
        volume_ceiling_m3=None,
        pipe_volumes=INDUSTRIAL_PIPE_VOLUMES,
        meter_volumes=INDUSTRIAL_METER_VOLUMES,
        fittings_allowance=False,
        tightness_stabilization_min=15.0,
        strength_stabilization_by_mop=True,
        purge_velocity_m_s=0.25,
    ),
}


def get_profile(regime: str | RegimeProfile) -> RegimeProfile:
    if isinstance(regime, RegimeProfile):
        return regime
    key = str(regime).strip().lower()
    try:
        return PRESETS[key]
    except KeyError:
        raise ValidationError(f"Unknown regime '{regime}' (expected one of {sorted(PRESETS)})") from None
