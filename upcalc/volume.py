"""Installation volume (IV) aggregation."""

from __future__ import annotations

from typing import Iterable, List, Optional
import logging

from .errors import ValidationError
from .models import InstallationVolume, MeterConfig, PipeSection, PurgeConduit, normalize_size_key
from .presets import RegimeProfile, get_profile

logger = logging.getLogger(__name__)

FITTINGS_FACTOR = 1.10

__all__ = [
    "FITTINGS_FACTOR",
    "normalize_size_key",
    "volume_per_metre",
    "pipe_section_volume",
    "meter_volume",
    "compute_installation_volume",
    "largest_pipe_diameter",
]


def volume_per_metre(section: PipeSection, profile: RegimeProfile | str = "commercial") -> float:
    prof = get_profile(profile)
    sizes = prof.pipe_volumes.get(section.material)
    if sizes is None or section.nominal_size not in sizes:
        raise ValidationError(
            f"No {prof.name} volume for {section.material} {section.nominal_size} mm pipe"
        )
    return float(sizes[section.nominal_size])


def pipe_section_volume(section: PipeSection, profile: RegimeProfile | str = "commercial") -> float:
    """Internal volume (m³) of one pipe section."""
    return volume_per_metre(section, profile) * section.length_m


def _meter_key(meter_type: str, table) -> Optional[str]:
    if meter_type in table:
        return meter_type
    folded = meter_type.strip().lower()
    for key in table:
        if key.lower() == folded:
            return key
    return None


def meter_volume(meter: MeterConfig | None, profile: RegimeProfile | str = "commercial") -> float:
    if meter is None or meter.meter_type == "none":
        return 0.0
    prof = get_profile(profile)
    key = _meter_key(meter.meter_type, prof.meter_volumes)
    if key is None:
        raise ValidationError(f"Unknown {prof.name} meter type '{meter.meter_type}'")
    return float(prof.meter_volumes[key]) * meter.quantity


def compute_installation_volume(pipes: Iterable[PipeSection],
                                meter: MeterConfig | None = None,
                                fittings_allowance: bool = False,
                                *,
                                profile: RegimeProfile | str = "commercial",
                                strict: bool = True) -> InstallationVolume:
    """Aggregate pipe and meter volumes into an :class:`InstallationVolume`.

    With ``fittings_allowance`` the pipe total is raised by 10 % before the
    meter volume is added. Unknown material/size combinations raise
    :class:`ValidationError`; with ``strict=False`` they contribute nothing
    and are listed in ``unrecognised`` instead.
    """
    prof = get_profile(profile)
    rows: List[dict] = []
    unrecognised: List[dict] = []
    pipe_total = 0.0
    for idx, section in enumerate(pipes):
        try:
            per_m = volume_per_metre(section, prof)
        except ValidationError as exc:
            if strict:
                raise ValidationError(f"Pipe section {idx + 1}: {exc}") from None
            logger.warning("Pipe section %d not recognised (%s); excluded from IV", idx + 1, exc)
            unrecognised.append({
                "index": idx,
                "material": section.material,
                "nominal_size": section.nominal_size,
                "length_m": section.length_m,
                "reason": str(exc),
            })
            continue
        vol = per_m * section.length_m
        pipe_total += vol
        rows.append({
            "index": idx,
            "material": section.material,
            "nominal_size": section.nominal_size,
            "length_m": section.length_m,
            "volume_per_metre_m3": per_m,
            "volume_m3": vol,
        })
    fittings = pipe_total * (FITTINGS_FACTOR - 1.0) if fittings_allowance else 0.0
    iv = InstallationVolume(
        pipe_volume=pipe_total,
        fittings_volume=fittings,
        meter_volume=meter_volume(meter, prof),
        pipes=rows,
        unrecognised=unrecognised,
        fittings_allowance=bool(fittings_allowance),
    )
    logger.debug("IV (%s): pipes %.5f + fittings %.5f + meter %.5f = %.5f m³",
                 prof.name, iv.pipe_volume, iv.fittings_volume, iv.meter_volume, iv.total)
    return iv


def largest_pipe_diameter(pipes: Iterable[PipeSection],
                          conduits: Iterable[PurgeConduit | None] = ()) -> float:
    """Largest nominal diameter (mm) across pipes and purge hose/stack."""
    sizes = [p.diameter_mm for p in pipes]
    sizes += [c.diameter_mm for c in conduits if c is not None]
    if not sizes:
        raise ValidationError("At least one pipe section or purge conduit is required")
    return max(sizes)
