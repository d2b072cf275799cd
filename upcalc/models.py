"""Plain data records passed into and out of the engine.

String categories are normalised once, at construction, so downstream code
only ever sees canonical keys (``"100"``, ``"Type B"``, ``"air_to_gas"``).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import math
import re

from .errors import ValidationError

REGIMES = ("commercial", "industrial")
INSTALLATION_TYPES = ("new", "existing")
ZONES = ("Type A", "Type B", "Type C")
MEDIA = ("air", "gas")
MATERIALS = ("steel", "copper")
TEST_TYPES = ("strength", "tightness", "let_by", "purge")
PURGE_DIRECTIONS = ("air_to_gas", "gas_to_air")

_GAUGE_ALIASES: Dict[str, float] = {
    "electronic05": 0.5,
    "electronic0.5": 0.5,
    "water": 0.5,
    "water gauge": 0.5,
    "watergauge": 0.5,
    "0.5": 0.5,
    "0.5 mbar": 0.5,
    "electronic01": 0.1,
    "electronic0.1": 0.1,
    "electronicdecimal": 0.1,
    "electronic": 0.1,
    "0.1": 0.1,
    "0.1 mbar": 0.1,
}

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(?:mm)?\s*$", re.IGNORECASE)


def normalize_choice(value: Any, allowed: Tuple[str, ...], what: str) -> str:
    key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
    for option in allowed:
        if key == option.lower().replace(" ", "_"):
            return option
    raise ValidationError(f"Unknown {what} '{value}' (expected one of {list(allowed)})")


def _finite(value: Any, what: str) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{what} must be a number, got {value!r}") from None
    if not math.isfinite(out):
        raise ValidationError(f"{what} must be finite, got {value!r}")
    return out


def normalize_size_key(size: Any) -> str:
    """Canonical nominal-size key: ``"100"``, ``"100mm"``, ``100.0`` -> ``"100"``."""
    if isinstance(size, bool):
        raise ValidationError(f"Unrecognised nominal size {size!r}")
    if isinstance(size, (int, float)):
        text = repr(float(size))
    else:
        text = str(size)
    m = _SIZE_RE.match(text)
    if not m:
        raise ValidationError(f"Unrecognised nominal size {size!r}")
    num = float(m.group(1))
    return str(int(num)) if num.is_integer() else f"{num:g}"


def normalize_gauge(gauge: Any) -> float:
    """Gauge reading multiplier (GRM) for a gauge label or resolution."""
    if isinstance(gauge, (int, float)) and not isinstance(gauge, bool):
        if math.isclose(float(gauge), 0.5):
            return 0.5
        if math.isclose(float(gauge), 0.1):
            return 0.1
    else:
        grm = _GAUGE_ALIASES.get(str(gauge).strip().lower())
        if grm is not None:
            return grm
    raise ValidationError(f"Unknown gauge type {gauge!r} (expected a 0.1 or 0.5 mbar class)")


def normalize_zone(zone: Any) -> str:
    key = str(zone).strip().upper().replace("TYPE", "").strip()
    if key in ("A", "B", "C"):
        return f"Type {key}"
    raise ValidationError(f"Unknown zone type {zone!r} (expected Type A, Type B or Type C)")


def normalize_purge_direction(direction: Any) -> str:
    key = re.sub(r"(?<=[a-z])(?=[A-Z])", "_", str(direction).strip())
    return normalize_choice(key, PURGE_DIRECTIONS, "purge direction")


@dataclass(frozen=True)
class PipeSection:
    material: str
    nominal_size: str
    length_m: float

    def __post_init__(self):
        object.__setattr__(self, "material", normalize_choice(self.material, MATERIALS, "pipe material"))
        object.__setattr__(self, "nominal_size", normalize_size_key(self.nominal_size))
        length = _finite(self.length_m, "Pipe length")
        if length < 0:
            raise ValidationError(f"Pipe length must be >= 0 m, got {length}")
        object.__setattr__(self, "length_m", length)

    @property
    def diameter_mm(self) -> float:
        return float(self.nominal_size)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PipeSection":
        size = d.get("nominal_size", d.get("size"))
        length = d.get("length_m", d.get("length"))
        if size is None or length is None:
            raise ValidationError(f"Pipe section needs a size and a length: {d!r}")
        return cls(material=d.get("material", "steel"), nominal_size=size, length_m=length)


@dataclass(frozen=True)
class MeterConfig:
    meter_type: str = "none"
    quantity: int = 0

    def __post_init__(self):
        object.__setattr__(self, "meter_type", str(self.meter_type).strip() or "none")
        if self.meter_type.lower() == "none":
            object.__setattr__(self, "meter_type", "none")
        qty = _finite(self.quantity, "Meter quantity")
        if qty < 0 or not qty.is_integer():
            raise ValidationError(f"Meter quantity must be a whole number >= 0, got {self.quantity!r}")
        object.__setattr__(self, "quantity", int(qty))

    @classmethod
    def from_dict(cls, d: Dict[str, Any] | None) -> "MeterConfig":
        if not d:
            return cls()
        return cls(meter_type=d.get("meter_type", d.get("type", "none")), quantity=d.get("quantity", 1))


@dataclass
class InstallationVolume:
    """Installation volume with its audit breakdown (all m³)."""

    pipe_volume: float
    fittings_volume: float
    meter_volume: float
    pipes: List[Dict[str, Any]] = field(default_factory=list)
    unrecognised: List[Dict[str, Any]] = field(default_factory=list)
    fittings_allowance: bool = False

    @property
    def pipe_component(self) -> float:
        return self.pipe_volume + self.fittings_volume

    @property
    def total(self) -> float:
        return self.pipe_component + self.meter_volume

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["pipe_component"] = self.pipe_component
        out["total"] = self.total
        return out


@dataclass(frozen=True)
class JobDetails:
    job_number: str = ""
    customer_name: str = ""
    engineer_name: str = ""
    gas_safe_number: str = ""
    location: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class JobParameters:
    """Inputs that select the formula family and table for a job.

    ``gauge`` keeps the label supplied by the caller (echoed on the
    certificate); :attr:`grm` is the resolved gauge reading multiplier.
    ``fittings_allowance=None`` means "use the regime default".
    """

    regime: str = "commercial"
    installation_type: str = "new"
    zone_type: Optional[str] = None
    gauge: Any = "electronic05"
    test_medium: str = "air"
    mop_mbar: float = 21.0
    mip_mbar: Optional[float] = None
    room_volume_m3: Optional[float] = None
    fittings_allowance: Optional[bool] = None

    def __post_init__(self):
        object.__setattr__(self, "regime", normalize_choice(self.regime, REGIMES, "regime"))
        object.__setattr__(self, "installation_type",
                           normalize_choice(self.installation_type, INSTALLATION_TYPES, "installation type"))
        if self.zone_type not in (None, ""):
            object.__setattr__(self, "zone_type", normalize_zone(self.zone_type))
        else:
            object.__setattr__(self, "zone_type", None)
        normalize_gauge(self.gauge)
        object.__setattr__(self, "test_medium", normalize_choice(self.test_medium, MEDIA, "test medium"))
        mop = _finite(self.mop_mbar, "MOP")
        if mop <= 0:
            raise ValidationError(f"MOP must be > 0 mbar, got {mop}")
        object.__setattr__(self, "mop_mbar", mop)
        if self.mip_mbar is not None:
            mip = _finite(self.mip_mbar, "MIP")
            if mip <= 0:
                raise ValidationError(f"MIP must be > 0 mbar, got {mip}")
            object.__setattr__(self, "mip_mbar", mip)
        if self.room_volume_m3 is not None:
            rv = _finite(self.room_volume_m3, "Room volume")
            if rv <= 0:
                raise ValidationError(f"Room volume must be > 0 m³, got {rv}")
            object.__setattr__(self, "room_volume_m3", rv)

    @property
    def grm(self) -> float:
        return normalize_gauge(self.gauge)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["grm"] = self.grm
        return out


@dataclass(frozen=True)
class TestSpec:
    """Resolved, read-only parameters for one test."""

    test_type: str
    regime: str
    test_pressure_mbar: float
    stabilization_s: float
    duration_s: float
    installation_volume_m3: float
    max_pressure_drop_mbar: Optional[float] = None
    source: str = ""
    grm: Optional[float] = None
    test_medium: Optional[str] = None
    mplr_m3h: Optional[float] = None

    __test__ = False  # not a pytest class

    @property
    def stabilization_min(self) -> float:
        return self.stabilization_s / 60.0

    @property
    def duration_min(self) -> float:
        return self.duration_s / 60.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PurgeConduit:
    kind: str
    diameter_mm: float
    length_m: float

    def __post_init__(self):
        object.__setattr__(self, "kind", normalize_choice(self.kind, ("hose", "stack"), "purge conduit"))
        d = _finite(self.diameter_mm, "Conduit diameter")
        if d <= 0:
            raise ValidationError(f"Conduit diameter must be > 0 mm, got {d}")
        length = _finite(self.length_m, "Conduit length")
        if length < 0:
            raise ValidationError(f"Conduit length must be >= 0 m, got {length}")
        object.__setattr__(self, "diameter_mm", d)
        object.__setattr__(self, "length_m", length)


@dataclass(frozen=True)
class PurgeSpec:
    installation_volume_m3: float
    conduit_volume_m3: float
    purge_volume_m3: float
    largest_diameter_mm: float
    table_diameter_mm: float
    minimum_flow_rate_m3h: float
    max_purge_time_s: float
    max_purge_time: str
    purge_direction: str
    gas_content_limit_pct: float
    purge_point_mm: float
    hose_vent_stack_mm: float
    flame_arrestor_mm: float
    flow_source: str = "Table B13"
    test_type: str = "purge"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ActualReading:
    pressure_drop_mbar: Optional[float] = None
    flow_rate_m3h: Optional[float] = None
    gas_content_pct: Optional[float] = None
    let_by_pressure_change_mbar: Optional[float] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any] | None) -> "ActualReading":
        d = d or {}
        known = {k: d[k] for k in cls.__dataclass_fields__ if k in d}
        return cls(**known)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Evaluation:
    result: str
    checks: Dict[str, bool] = field(default_factory=dict)
    reasons: Tuple[str, ...] = ()
    leakage_rate_m3h: Optional[float] = None

    @property
    def passed(self) -> bool:
        return self.result == "PASS"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class TestOutcome:
    test_type: str
    result: str
    spec: Any
    reading: ActualReading
    evaluation: Evaluation
    timestamp: str = field(default_factory=utc_timestamp)

    __test__ = False

    @property
    def passed(self) -> bool:
        return self.result == "PASS"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_type": self.test_type,
            "result": self.result,
            "spec": self.spec.to_dict(),
            "reading": self.reading.to_dict(),
            "evaluation": self.evaluation.to_dict(),
            "timestamp": self.timestamp,
        }
