"""PASS/FAIL decisions from field readings."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging
import math

from .duration import STRENGTH_DROP_FRACTION, leakage_rate
from .errors import ValidationError
from .models import ActualReading, Evaluation, PurgeSpec, TestSpec, TEST_TYPES, normalize_choice
from .purge import GAS_CONTENT_LIMITS

logger = logging.getLogger(__name__)

# absorbs binary rounding at inclusive limits, e.g. 16.5 vs 0.2 * 82.5
TOLERANCE = 1e-9


def _required(reading: ActualReading, name: str, test_type: str) -> float:
    value = getattr(reading, name)
    if value is None:
        raise ValidationError(f"{test_type} reading requires '{name}'")
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{test_type} reading '{name}' must be a number, got {value!r}") from None
    if math.isnan(out):
        raise ValidationError(f"{test_type} reading '{name}' is not a number")
    return out


def _usable(limit: Optional[float]) -> bool:
    return limit is not None and not math.isnan(float(limit))


def _verdict(checks: Dict[str, bool], reasons: List[str], **extra: Any) -> Evaluation:
    result = "PASS" if checks and all(checks.values()) and not reasons else "FAIL"
    return Evaluation(result=result, checks=checks, reasons=tuple(reasons), **extra)


def evaluate_strength(spec: TestSpec, reading: ActualReading) -> Evaluation:
    drop = _required(reading, "pressure_drop_mbar", "strength")
    limit = STRENGTH_DROP_FRACTION * spec.test_pressure_mbar
    ok = drop <= limit + TOLERANCE
    reasons = [] if ok else [f"pressure drop {drop:g} mbar exceeds {limit:g} mbar (20% of {spec.test_pressure_mbar:g})"]
    return _verdict({"pressure_drop": ok}, reasons)


def evaluate_tightness(spec: TestSpec, reading: ActualReading) -> Evaluation:
    drop = _required(reading, "pressure_drop_mbar", "tightness")
    lr = None
    if spec.mplr_m3h is not None and spec.test_medium:
        lr = leakage_rate(drop, spec.installation_volume_m3, spec.duration_s, spec.test_medium)
    if not _usable(spec.max_pressure_drop_mbar):
        return Evaluation(
            result="FAIL",
            checks={"pressure_drop": False},
            reasons=("max pressure drop not resolved",),
            leakage_rate_m3h=lr,
        )
    limit = float(spec.max_pressure_drop_mbar)
    ok = drop <= limit + TOLERANCE
    reasons = [] if ok else [f"pressure drop {drop:g} mbar exceeds {limit:g} mbar"]
    return _verdict({"pressure_drop": ok}, reasons, leakage_rate_m3h=lr)


def evaluate_let_by(spec: TestSpec, reading: ActualReading) -> Evaluation:
    change = _required(reading, "let_by_pressure_change_mbar", "let-by")
    ok = change <= TOLERANCE
    reasons = [] if ok else [f"pressure rose by {change:g} mbar during the let-by test"]
    return _verdict({"no_pressure_rise": ok}, reasons)


def evaluate_purge(spec: PurgeSpec, reading: ActualReading) -> Evaluation:
    flow = _required(reading, "flow_rate_m3h", "purge")
    gas = _required(reading, "gas_content_pct", "purge")
    reasons: List[str] = []
    flow_ok = flow >= spec.minimum_flow_rate_m3h - TOLERANCE
    if not flow_ok:
        reasons.append(f"flow rate {flow:g} m³/h below minimum {spec.minimum_flow_rate_m3h:g} m³/h")
    limit = GAS_CONTENT_LIMITS[spec.purge_direction]
    if spec.purge_direction == "air_to_gas":
        gas_ok = gas >= limit - TOLERANCE
        if not gas_ok:
            reasons.append(f"gas content {gas:g}% below {limit:g}% (air to gas)")
    else:
        gas_ok = gas <= limit + TOLERANCE
        if not gas_ok:
            reasons.append(f"gas content {gas:g}% above {limit:g}% (gas to air)")
    return _verdict({"flow_rate": flow_ok, "gas_content": gas_ok}, reasons)


_EVALUATORS = {
    "strength": evaluate_strength,
    "tightness": evaluate_tightness,
    "let_by": evaluate_let_by,
    "purge": evaluate_purge,
}


def evaluate(test_type: str, spec: TestSpec | PurgeSpec, reading: ActualReading) -> Evaluation:
    """Evaluate ``reading`` against ``spec``; see :class:`Evaluation` for detail."""
    test_type = normalize_choice(test_type, TEST_TYPES, "test type")
    if spec is None:
        raise ValidationError(f"No resolved spec to evaluate the {test_type} test against")
    if reading is None:
        raise ValidationError(f"A reading is required to evaluate the {test_type} test")
    if getattr(spec, "test_type", test_type) != test_type:
        raise ValidationError(f"Spec is for a {spec.test_type} test, not {test_type}")
    ev = _EVALUATORS[test_type](spec, reading)
    logger.info("%s test: %s%s", test_type, ev.result, f" ({'; '.join(ev.reasons)})" if ev.reasons else "")
    return ev
