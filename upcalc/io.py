from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import json

import pandas as pd

from .errors import ValidationError
from .models import ActualReading, JobDetails, JobParameters, MeterConfig, PipeSection, PurgeConduit
from .tables import StandardTables

PIPE_COLUMNS = {
    "material": ["material", "Material", "pipe_material"],
    "size": ["size", "Size", "nominal_size", "diameter", "size_mm"],
    "length": ["length", "Length", "length_m"],
}


@dataclass
class JobFile:
    """Everything needed to run one job, as read from disk."""

    details: JobDetails = field(default_factory=JobDetails)
    regime: str = "commercial"
    installation_type: str = "new"
    params: Optional[JobParameters] = None
    pipes: List[PipeSection] = field(default_factory=list)
    meter: MeterConfig = field(default_factory=MeterConfig)
    purge: Dict[str, Any] = field(default_factory=dict)
    readings: Dict[str, ActualReading] = field(default_factory=dict)
    first_test: str = "strength"
    strict: bool = True
    tables: Optional[StandardTables] = None


def _pick(df: pd.DataFrame, names: List[str]) -> Optional[str]:
    for n in names:
        if n in df.columns:
            return n
    return None


def load_pipe_schedule(path: Path, sheet=None) -> List[PipeSection]:
    """Read pipe sections from a CSV or Excel sheet (material, size, length)."""
    path = Path(path)
    if path.suffix.lower() in (".xlsx", ".xls"):
        df = pd.read_excel(path, sheet_name=sheet or 0)
    else:
        df = pd.read_csv(path)
    cols = {k: _pick(df, v) for k, v in PIPE_COLUMNS.items()}
    if cols["size"] is None or cols["length"] is None:
        raise ValidationError(f"{path}: expected 'size' and 'length' columns, got {list(df.columns)}")
    df = df.dropna(subset=[cols["size"], cols["length"]], how="all")
    pipes = []
    for r in df.to_dict("records"):
        pipes.append(PipeSection(
            material=r[cols["material"]] if cols["material"] else "steel",
            nominal_size=r[cols["size"]],
            length_m=r[cols["length"]],
        ))
    return pipes


def _conduit(d: Dict[str, Any] | None, kind: str) -> Optional[PurgeConduit]:
    if not d:
        return None
    return PurgeConduit(kind=kind, diameter_mm=d.get("diameter_mm"), length_m=d.get("length_m", 0.0))


def load_job(path: Path, tables: StandardTables | None = None) -> JobFile:
    """Load a JSON job file.

    ``pipe_schedule`` may name a CSV/XLSX file (relative to the job file)
    instead of listing ``pipes`` inline.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{path}: invalid JSON ({exc})") from None
    if not isinstance(data, dict):
        raise ValidationError(f"{path}: expected a JSON object")

    regime = data.get("regime", "commercial")
    installation_type = data.get("installation_type", "new")
    params = None
    if data.get("parameters") is not None:
        try:
            params = JobParameters(**{"regime": regime, "installation_type": installation_type,
                                      **data["parameters"]})
        except TypeError as exc:
            raise ValidationError(f"{path}: invalid parameters ({exc})") from None

    pipes = [PipeSection.from_dict(p) for p in data.get("pipes", [])]
    if data.get("pipe_schedule"):
        pipes += load_pipe_schedule(path.parent / data["pipe_schedule"])

    purge = dict(data.get("purge") or {})
    if "hose" in purge:
        purge["hose"] = _conduit(purge["hose"], "hose")
    if "stack" in purge:
        purge["stack"] = _conduit(purge["stack"], "stack")

    try:
        details = JobDetails(**(data.get("job") or {}))
    except TypeError as exc:
        raise ValidationError(f"{path}: invalid job details ({exc})") from None

    return JobFile(
        details=details,
        regime=regime,
        installation_type=installation_type,
        params=params,
        pipes=pipes,
        meter=MeterConfig.from_dict(data.get("meter")),
        purge=purge,
        readings={k.replace("-", "_"): ActualReading.from_dict(v) for k, v in (data.get("readings") or {}).items()},
        first_test=data.get("first_test", "strength"),
        strict=bool(data.get("strict", True)),
        tables=tables,
    )
