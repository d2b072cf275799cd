from __future__ import annotations

import json
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Dict, List
import logging

from .errors import ValidationError
from .presets import PRESETS, RegimeProfile
from .tables import DEFAULT_TABLES, PurgeRow, StandardTables, freeze_mapping

logger = logging.getLogger(__name__)

_REGIME_FIELDS = {f.name for f in fields(RegimeProfile)} - {"name", "tables"}


def _find(name: str, search_paths: List[str | Path]) -> Path | None:
    for base in search_paths:
        p = Path(base)
        if p.is_file() and p.suffix.lower() == ".json":
            return p
        candidate = p / f"{name}.json"
        if candidate.exists():
            return candidate
    return None


def _rows(data: Any, width: int, what: str) -> tuple:
    try:
        rows = tuple(tuple(float(v) for v in row) for row in data)
    except (TypeError, ValueError):
        raise ValidationError(f"{what}: rows must be lists of numbers") from None
    if any(len(r) != width for r in rows):
        raise ValidationError(f"{what}: every row needs {width} values")
    return rows


def tables_from_dict(data: Dict[str, Any], base: StandardTables = DEFAULT_TABLES) -> StandardTables:
    """Build a :class:`StandardTables` from a JSON-style dict, starting at ``base``.

    Keys that are absent keep the value from ``base``. Shapes and row order
    are validated by :class:`StandardTables` itself.
    """
    kw: Dict[str, Any] = {}
    if "edition" in data:
        kw["edition"] = str(data["edition"])
    if "purge_flow" in data:
        kw["purge_rows"] = tuple(PurgeRow(*r) for r in _rows(data["purge_flow"], 5, "purge_flow"))
    if "tightness_drop" in data:
        drop = data["tightness_drop"]
        try:
            kw["drop_iv_bands"] = [float(v) for v in drop["iv_bands"]]
            kw["drop_room_volumes"] = [float(v) for v in drop["room_volumes"]]
            kw["drop_values"] = _rows(drop["values"], len(kw["drop_room_volumes"]), "tightness_drop")
        except KeyError as exc:
            raise ValidationError(f"tightness_drop: missing '{exc.args[0]}'") from None
    if "new_durations" in data:
        kw["new_durations"] = tuple((r[0], int(r[1]), int(r[2])) for r in _rows(data["new_durations"], 3, "new_durations"))
    if "existing_durations" in data:
        kw["existing_durations"] = tuple(
            (r[0], int(r[1]), int(r[2])) for r in _rows(data["existing_durations"], 3, "existing_durations")
        )
    if "let_by_durations" in data:
        kw["let_by_durations"] = tuple((r[0], int(r[1])) for r in _rows(data["let_by_durations"], 2, "let_by_durations"))
    for key in ("f1", "f3", "mplr"):
        if key in data:
            kw[key] = freeze_mapping(data[key])
    return replace(base, **kw)


def load_standard_profile(name: str,
                          search_paths: List[str | Path] | None = None,
                          base: Dict[str, RegimeProfile] | None = None) -> Dict[str, RegimeProfile] | None:
    """Return regime profiles for an edition of the standard.

    Profiles are stored as JSON files named ``<name>.json`` within any of the
    *search_paths* (or a path to the file itself). A file may carry a
    ``tables`` block shared by both regimes plus a ``commercial`` and/or
    ``industrial`` block overriding :class:`RegimeProfile` fields such as
    ``pipe_volumes`` or ``volume_ceiling_m3``. Returns ``None`` when no
    file is found; malformed content raises :class:`ValidationError`.
    """
    base = base or PRESETS
    path = _find(name, search_paths or [])
    if path is None:
        return None
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{path}: invalid JSON ({exc})") from None
    if not isinstance(data, dict):
        raise ValidationError(f"{path}: expected a JSON object")

    shared = data.get("tables") or {}
    if "edition" in data and "edition" not in shared:
        shared = {**shared, "edition": data["edition"]}
    out: Dict[str, RegimeProfile] = {}
    for regime, prof in base.items():
        tables = tables_from_dict(shared, prof.tables) if shared else prof.tables
        override = data.get(regime) or {}
        unknown = set(override) - _REGIME_FIELDS
        if unknown:
            raise ValidationError(f"{path}: unknown {regime} fields {sorted(unknown)}")
        kw = {k: (freeze_mapping(v) if isinstance(v, dict) else v) for k, v in override.items()}
        out[regime] = replace(prof, tables=tables, **kw)
    logger.info("Loaded standard profile '%s' from %s", name, path)
    return out
