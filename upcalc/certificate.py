"""Certificate payload: everything a renderer needs, with no re-derivation."""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List
import json
import logging

import pandas as pd

from .models import utc_timestamp
from .workflow import Sequencer

logger = logging.getLogger(__name__)


def build_certificate_data(seq: Sequencer) -> Dict[str, Any]:
    """Collect job identifiers, configuration echo, IV breakdown and outcomes."""
    iv = seq.state.installation_volume or seq.installation_volume()
    params = seq.effective_params().to_dict() if seq.params is not None else None
    latest = seq.latest_outcomes()
    return {
        "generated_at": utc_timestamp(),
        "job": seq.job.to_dict(),
        "regime": seq.profile.name,
        "standard": seq.profile.standard,
        "edition": seq.profile.tables.edition,
        "installation_type": seq.state.installation_type,
        "parameters": params,
        "pipes": [asdict(p) for p in seq.pipes],
        "meter": asdict(seq.meter),
        "installation_volume": iv.to_dict(),
        "directive": seq.state.directive,
        "tests": {t: o.to_dict() for t, o in latest.items()},
        "history": [o.to_dict() for o in seq.state.outcomes],
    }


def summary_rows(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """One flat row per latest test outcome."""
    rows = []
    for t, o in payload.get("tests", {}).items():
        spec = o["spec"]
        reading = o["reading"]
        rows.append({
            "test_type": t,
            "result": o["result"],
            "timestamp": o["timestamp"],
            "test_pressure_mbar": spec.get("test_pressure_mbar"),
            "stabilization_s": spec.get("stabilization_s"),
            "duration_s": spec.get("duration_s", spec.get("max_purge_time_s")),
            "max_pressure_drop_mbar": spec.get("max_pressure_drop_mbar"),
            "minimum_flow_rate_m3h": spec.get("minimum_flow_rate_m3h"),
            "purge_volume_m3": spec.get("purge_volume_m3"),
            **{f"reading_{k}": v for k, v in reading.items()},
            "reasons": "; ".join(o["evaluation"]["reasons"]),
        })
    return rows


def write_certificate(outdir: Path, payload: Dict[str, Any]) -> List[str]:
    """Write ``certificate.json`` and ``tests_summary.csv``; return their paths."""
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    js = outdir / "certificate.json"
    js.write_text(json.dumps(payload, indent=2))
    files = [str(js)]
    rows = summary_rows(payload)
    if rows:
        csv = outdir / "tests_summary.csv"
        pd.DataFrame(rows).to_csv(csv, index=False)
        files.append(str(csv))
    logger.info("Certificate data written to %s", outdir)
    return files
