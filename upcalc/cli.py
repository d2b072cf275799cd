from __future__ import annotations
import argparse, json, logging, sys
from pathlib import Path
from typing import Any

from .certificate import build_certificate_data, write_certificate
from .duration import resolve_test_spec
from .errors import UpCalcError, ValidationError
from .evaluate import evaluate
from .io import load_job, load_pipe_schedule
from .models import ActualReading, JobParameters, MeterConfig, PipeSection, PurgeConduit
from .presets import PRESETS, RegimeProfile
from .profiles import load_standard_profile
from .purge import compute_purge
from .tables import tables_to_frames
from .volume import compute_installation_volume
from .workflow import run_job

logger = logging.getLogger(__name__)


def configure_logging(level: str = "WARNING", json_format: bool = False) -> None:
    """Root logging on stderr; stdout is reserved for JSON results."""
    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        ))
    logging.basicConfig(level=getattr(logging, level.upper(), logging.WARNING), handlers=[handler], force=True)


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps({
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }, sort_keys=True)


def _pipe_arg(text: str) -> PipeSection:
    """``steel:100:10`` -> PipeSection(steel, "100", 10 m)."""
    parts = text.split(":")
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"expected MATERIAL:SIZE:LENGTH, got '{text}'")
    try:
        return PipeSection(parts[0], parts[1], float(parts[2]))
    except (ValueError, UpCalcError) as e:
        raise argparse.ArgumentTypeError(str(e))


def _conduit_arg(kind: str):
    def parse(text: str) -> PurgeConduit:
        try:
            d, length = text.split(":")
            return PurgeConduit(kind, float(d), float(length))
        except (ValueError, UpCalcError) as e:
            raise argparse.ArgumentTypeError(f"expected DIAMETER_MM:LENGTH_M ({e})")
    return parse


def _add_job_params(p: argparse.ArgumentParser) -> None:
    p.add_argument("--iv", type=float, required=True, help="Installation volume (m³)")
    p.add_argument("--installation", default="new", choices=["new", "existing"])
    p.add_argument("--zone", default=None, help="Type A / Type B / Type C (industrial)")
    p.add_argument("--gauge", default="electronic05", help="Gauge type or resolution (0.1 / 0.5)")
    p.add_argument("--medium", default="air", choices=["air", "gas"])
    p.add_argument("--mop", type=float, default=21.0, help="Maximum operating pressure (mbar)")
    p.add_argument("--mip", type=float, default=None, help="Maximum incidental pressure (mbar)")
    p.add_argument("--room-volume", type=float, default=None, help="Room volume (m³)")


def _add_purge_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--largest-diameter", type=float, required=True, help="Largest pipe diameter (mm)")
    p.add_argument("--hose", type=_conduit_arg("hose"), default=None, help="Purge hose DIAMETER_MM:LENGTH_M")
    p.add_argument("--stack", type=_conduit_arg("stack"), default=None, help="Vent stack DIAMETER_MM:LENGTH_M")
    p.add_argument("--direction", default="air_to_gas", choices=["air_to_gas", "gas_to_air"])


def build_parser():
    p = argparse.ArgumentParser(prog="upcalc", description="IGE/UP/1 strength, tightness, let-by and purge calculator")
    p.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...)")
    p.add_argument("--json-logs", action="store_true", help="Emit log records as JSON lines")
    p.add_argument("--profile", default=None, help="Edition profile name (<name>.json)")
    p.add_argument("--profile-path", action="append", default=[], help="Directory or file to search for profiles")
    sub = p.add_subparsers(dest="cmd", required=True)

    v = sub.add_parser("volume", help="Installation volume with breakdown")
    v.add_argument("--regime", default="commercial", choices=PRESETS.keys())
    v.add_argument("--pipe", type=_pipe_arg, action="append", default=[], help="MATERIAL:SIZE:LENGTH_M (repeatable)")
    v.add_argument("--schedule", type=Path, default=None, help="CSV/XLSX pipe schedule")
    v.add_argument("--meter", default="none", help="Meter type (e.g. U16)")
    v.add_argument("--meter-qty", type=int, default=1)
    fit = v.add_mutually_exclusive_group()
    fit.add_argument("--fittings", dest="fittings", action="store_true", default=None, help="Add 10%% fittings allowance")
    fit.add_argument("--no-fittings", dest="fittings", action="store_false", help="No fittings allowance")
    v.add_argument("--lenient", action="store_true", help="Flag unknown pipe sizes instead of failing")

    s = sub.add_parser("spec", help="Resolve strength / tightness / let-by test parameters")
    s.add_argument("--test", required=True, choices=["strength", "tightness", "let_by"])
    s.add_argument("--regime", default="commercial", choices=PRESETS.keys())
    _add_job_params(s)

    pg = sub.add_parser("purge", help="Purge volume, minimum flow rate and maximum time")
    pg.add_argument("--regime", default="commercial", choices=PRESETS.keys())
    pg.add_argument("--iv", type=float, required=True, help="Installation volume (m³)")
    _add_purge_args(pg)

    e = sub.add_parser("evaluate", help="PASS/FAIL for a single reading")
    e.add_argument("--test", required=True, choices=["strength", "tightness", "let_by", "purge"])
    e.add_argument("--regime", default="commercial", choices=PRESETS.keys())
    _add_job_params(e)
    e.add_argument("--largest-diameter", type=float, default=None, help="Largest pipe diameter (mm), purge only")
    e.add_argument("--hose", type=_conduit_arg("hose"), default=None)
    e.add_argument("--stack", type=_conduit_arg("stack"), default=None)
    e.add_argument("--direction", default="air_to_gas", choices=["air_to_gas", "gas_to_air"])
    e.add_argument("--drop", type=float, default=None, help="Measured pressure drop (mbar)")
    e.add_argument("--flow", type=float, default=None, help="Measured purge flow rate (m³/h)")
    e.add_argument("--gas", type=float, default=None, help="Measured gas content (%%)")
    e.add_argument("--change", type=float, default=None, help="Let-by pressure change (mbar)")

    r = sub.add_parser("run", help="Run a job file through the test sequence")
    r.add_argument("job", type=Path, help="JSON job file")
    r.add_argument("--out", type=Path, default=None, help="Write certificate.json / tests_summary.csv here")

    t = sub.add_parser("tables", help="Export the reference tables as CSV")
    t.add_argument("--regime", default="commercial", choices=PRESETS.keys())
    t.add_argument("--out", type=Path, required=True)
    return p


def _profiles(a) -> dict[str, RegimeProfile]:
    if not a.profile:
        return PRESETS
    loaded = load_standard_profile(a.profile, a.profile_path)
    if loaded is None:
        raise ValidationError(f"Profile '{a.profile}' not found in {a.profile_path or '[]'}")
    return loaded


def _params(a) -> JobParameters:
    return JobParameters(
        regime=a.regime,
        installation_type=a.installation,
        zone_type=a.zone,
        gauge=a.gauge,
        test_medium=a.medium,
        mop_mbar=a.mop,
        mip_mbar=a.mip,
        room_volume_m3=a.room_volume,
    )


def _dispatch(a) -> Any:
    profiles = _profiles(a)
    if a.cmd == "volume":
        pipes = list(a.pipe)
        if a.schedule:
            pipes += load_pipe_schedule(a.schedule)
        prof = profiles[a.regime]
        fittings = prof.fittings_allowance if a.fittings is None else a.fittings
        meter = MeterConfig(a.meter, a.meter_qty if a.meter != "none" else 0)
        iv = compute_installation_volume(pipes, meter, fittings, profile=prof, strict=not a.lenient)
        return iv.to_dict()
    elif a.cmd == "spec":
        return resolve_test_spec(a.iv, _params(a), a.test, profile=profiles[a.regime]).to_dict()
    elif a.cmd == "purge":
        prof = profiles[a.regime]
        return compute_purge(
            a.iv, a.hose, a.stack, a.largest_diameter,
            purge_direction=a.direction, tables=prof.tables, velocity_m_s=prof.purge_velocity_m_s,
        ).to_dict()
    elif a.cmd == "evaluate":
        prof = profiles[a.regime]
        if a.test == "purge":
            spec = compute_purge(a.iv, a.hose, a.stack, a.largest_diameter,
                                 purge_direction=a.direction, tables=prof.tables,
                                 velocity_m_s=prof.purge_velocity_m_s)
        else:
            spec = resolve_test_spec(a.iv, _params(a), a.test, profile=prof)
        reading = ActualReading(
            pressure_drop_mbar=a.drop,
            flow_rate_m3h=a.flow,
            gas_content_pct=a.gas,
            let_by_pressure_change_mbar=a.change,
        )
        ev = evaluate(a.test, spec, reading)
        return {"spec": spec.to_dict(), "reading": reading.to_dict(), **ev.to_dict()}
    elif a.cmd == "run":
        job = load_job(a.job)
        seq = run_job(job, profile=profiles.get(str(job.regime).strip().lower()))
        payload = build_certificate_data(seq)
        res = {"summary": seq.summary(), "certificate": payload}
        if a.out:
            res["files"] = write_certificate(a.out, payload)
        return res
    elif a.cmd == "tables":
        prof = profiles[a.regime]
        a.out.mkdir(parents=True, exist_ok=True)
        files = []
        for name, df in tables_to_frames(prof.tables, prof.pipe_volumes, prof.meter_volumes).items():
            path = a.out / f"{prof.name}_{name}.csv"
            df.to_csv(path, index=False)
            files.append(str(path))
        return {"edition": prof.tables.edition, "files": files}
    raise ValidationError(f"Unknown command {a.cmd}")


def main(argv=None):
    ap = build_parser()
    a = ap.parse_args(argv)
    configure_logging(a.log_level, a.json_logs)
    try:
        res = _dispatch(a)
    except UpCalcError as e:
        logger.debug("Command failed", exc_info=True)
        print(json.dumps({"ok": False, "error": type(e).__name__, "message": str(e)}), file=sys.stderr)
        return 2
    print(json.dumps(res, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
