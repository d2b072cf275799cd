"""Resolve test pressure, stabilization, duration and drop limits.

Three industrial formula families select the tightness test duration (TTD)
by zone; the commercial regime reads it from tables instead::

    Type A   TTD = GRM * IV * F1                 (minutes)
    Type B   TTD = 2.8 * GRM * IV * F1 / RV      (existing, RV < 60 m³)
    Type C   TTD = 0.047 * GRM * IV * F1

F1 is 67 for air and 42 for gas. Industrial TTD is never below two minutes.
The industrial drop limit inverts the leak-rate relation
``LR = F3 * PD * IV / TTD`` at the maximum permitted leak rate (MPLR).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Tuple
import logging
import math

from .errors import RegimeViolation, ValidationError
from .models import JobParameters, TestSpec, normalize_choice
from .presets import RegimeProfile, get_profile
from .tables import (
    DEFAULT_TABLES,
    StandardTables,
    lookup_existing_installation_minutes,
    lookup_let_by_minutes,
    lookup_max_drop,
    lookup_new_installation_minutes,
)

logger = logging.getLogger(__name__)

MIN_TTD_S = 120.0
STRENGTH_MIN_PRESSURE_MBAR = 82.5
STRENGTH_MOP_FACTOR = 2.5
STRENGTH_MIP_FACTOR = 1.1
STRENGTH_DROP_FRACTION = 0.2
TIGHTNESS_MIN_PRESSURE_MBAR = 20.0
LET_BY_MOP_FACTOR = 0.5
TYPE_B_ROOM_LIMIT_M3 = 60.0
TYPE_B_FACTOR = 2.8
TYPE_C_FACTOR = 0.047

SPEC_TEST_TYPES = ("strength", "tightness", "let_by")


def check_regime(iv: float, profile: RegimeProfile | str) -> None:
    """Raise :class:`RegimeViolation` if ``iv`` is above the regime ceiling."""
    prof = get_profile(profile)
    ceiling = prof.volume_ceiling_m3
    if ceiling is not None and round(float(iv), 9) > ceiling:
        raise RegimeViolation(iv, ceiling, prof.name)


def _check_iv(iv: float) -> float:
    try:
        iv = float(iv)
    except (TypeError, ValueError):
        raise ValidationError(f"Installation volume must be a number, got {iv!r}") from None
    if not (math.isfinite(iv) and iv > 0):
        raise ValidationError(f"Installation volume must be > 0 m³, got {iv}")
    return iv


def strength_test_pressure(params: JobParameters) -> float:
    stp = max(STRENGTH_MIN_PRESSURE_MBAR, STRENGTH_MOP_FACTOR * params.mop_mbar)
    if params.regime == "industrial" and params.mip_mbar is not None:
        stp = max(stp, STRENGTH_MIP_FACTOR * params.mip_mbar)
    return stp


def tightness_test_pressure(params: JobParameters) -> float:
    return max(params.mop_mbar, TIGHTNESS_MIN_PRESSURE_MBAR)


def let_by_test_pressure(params: JobParameters) -> float:
    return LET_BY_MOP_FACTOR * params.mop_mbar


def strength_stabilization_s(params: JobParameters, profile: RegimeProfile) -> float:
    if profile.strength_stabilization_by_mop:
        return (5.0 if params.mop_mbar < 100 else 10.0) * 60.0
    return 5.0 * 60.0


def industrial_ttd_s(iv: float, params: JobParameters, tables: StandardTables) -> Tuple[float, str]:
    """TTD in seconds for the zone in force, floored at two minutes."""
    if params.zone_type is None:
        raise ValidationError("Zone type (Type A, B or C) is required for industrial tightness tests")
    grm = params.grm
    f1 = tables.f1[params.test_medium]
    zone = params.zone_type
    if zone == "Type B" and params.installation_type == "existing":
        rv = params.room_volume_m3
        if rv is None:
            raise ValidationError("Room volume is required for Type B tightness tests")
        if rv >= TYPE_B_ROOM_LIMIT_M3:
            raise ValidationError(
                f"Type B applies to rooms under {TYPE_B_ROOM_LIMIT_M3:g} m³ (got {rv:g}); use Type C"
            )
        minutes = TYPE_B_FACTOR * grm * iv * (1.0 / rv) * f1
        source = "Type B: 2.8 x GRM x IV / RV x F1"
    elif zone == "Type C":
        minutes = TYPE_C_FACTOR * grm * iv * f1
        source = "Type C: 0.047 x GRM x IV x F1"
    else:
        # new Type B installations are timed as Type A
        minutes = grm * iv * f1
        source = "Type A: GRM x IV x F1"
    ttd = max(minutes * 60.0, MIN_TTD_S)
    logger.debug("Industrial TTD (%s, GRM %.1f, %s): %.1f s", zone, grm, params.test_medium, ttd)
    return ttd, source


def commercial_ttd_s(iv: float, params: JobParameters, tables: StandardTables) -> Tuple[float, str]:
    if params.installation_type == "new":
        minutes = lookup_new_installation_minutes(tables, iv, params.grm)
        source = f"Table 6 (new installation, GRM {params.grm:g})"
    else:
        minutes = lookup_existing_installation_minutes(tables, iv, params.test_medium)
        source = f"Table 7 (existing installation, {params.test_medium})"
    return minutes * 60.0, source


def tightness_ttd_s(iv: float, params: JobParameters, profile: RegimeProfile | str | None = None) -> Tuple[float, str]:
    prof = get_profile(profile or params.regime)
    if prof.name == "industrial":
        return industrial_ttd_s(iv, params, prof.tables)
    return commercial_ttd_s(iv, params, prof.tables)


def leakage_rate(pressure_drop_mbar: float, iv: float, ttd_s: float, medium: str,
                 tables: StandardTables | None = None) -> float:
    """Implied leak rate (m³/h): ``F3 * PD * IV / TTD_min``."""
    tables = tables or DEFAULT_TABLES
    f3 = tables.f3[normalize_choice(medium, ("air", "gas"), "test medium")]
    return f3 * float(pressure_drop_mbar) * float(iv) / (float(ttd_s) / 60.0)


def industrial_max_drop(iv: float, ttd_s: float, params: JobParameters,
                        tables: StandardTables) -> Tuple[float, float]:
    """Return ``(max_drop_mbar, mplr_m3h)`` for an industrial tightness test."""
    try:
        mplr = tables.mplr[params.zone_type][params.installation_type]
    except KeyError:
        raise ValidationError(
            f"No MPLR for zone {params.zone_type!r} / {params.installation_type!r}"
        ) from None
    f3 = tables.f3[params.test_medium]
    return mplr * (ttd_s / 60.0) / (f3 * iv), mplr


def resolve_test_spec(iv: float, params: JobParameters, test_type: str,
                      *, profile: RegimeProfile | str | None = None) -> TestSpec:
    """Resolve the :class:`TestSpec` for ``strength``, ``tightness`` or ``let_by``.

    Raises
    ------
    ValidationError
        ``iv <= 0`` or a field needed by the selected branch is missing.
    RegimeViolation
        ``iv`` exceeds the ceiling of the regime (commercial: 1.0 m³).
    LookupGap
        No table row applies.
    """
    test_type = normalize_choice(test_type, SPEC_TEST_TYPES, "test type")
    iv = _check_iv(iv)
    prof = get_profile(profile or params.regime)
    if prof.name != params.regime:
        params = replace(params, regime=prof.name)
    check_regime(iv, prof)
    tables = prof.tables
    common = dict(
        test_type=test_type,
        regime=prof.name,
        installation_volume_m3=iv,
        grm=params.grm,
        test_medium=params.test_medium,
    )

    if test_type == "strength":
        stp = strength_test_pressure(params)
        spec = TestSpec(
            test_pressure_mbar=stp,
            stabilization_s=strength_stabilization_s(params, prof),
            duration_s=prof.strength_duration_min * 60.0,
            max_pressure_drop_mbar=STRENGTH_DROP_FRACTION * stp,
            source="20% of strength test pressure",
            **common,
        )
    elif test_type == "tightness":
        ttd, source = tightness_ttd_s(iv, params, prof)
        mplr = None
        if prof.name == "industrial":
            max_drop, mplr = industrial_max_drop(iv, ttd, params, tables)
        else:
            if params.room_volume_m3 is None:
                raise ValidationError("Room volume is required to resolve the tightness drop limit")
            max_drop, band, column = lookup_max_drop(tables, iv, params.room_volume_m3)
            source += f"; drop table IV band {band:g}, room volume {column:g} m³"
        spec = TestSpec(
            test_pressure_mbar=tightness_test_pressure(params),
            stabilization_s=max(prof.tightness_stabilization_min * 60.0, ttd),
            duration_s=ttd,
            max_pressure_drop_mbar=max_drop,
            source=source,
            mplr_m3h=mplr,
            **common,
        )
    else:
        if prof.name == "industrial":
            duration, source = industrial_ttd_s(iv, params, tables)
            source = f"let-by duration = TTD ({source})"
        else:
            duration = lookup_let_by_minutes(tables, iv) * 60.0
            source = "let-by duration table"
        spec = TestSpec(
            test_pressure_mbar=let_by_test_pressure(params),
            stabilization_s=0.0,
            duration_s=duration,
            max_pressure_drop_mbar=0.0,
            source=source,
            **common,
        )
    logger.debug("Resolved %s spec: %s", test_type, spec)
    return spec
