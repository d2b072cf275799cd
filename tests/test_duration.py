import pytest

from upcalc.duration import leakage_rate, resolve_test_spec
from upcalc.errors import RegimeViolation, ValidationError
from upcalc.models import JobParameters


def commercial(**kw):
    base = dict(regime="commercial", installation_type="new", gauge="electronic05",
                test_medium="air", mop_mbar=21, room_volume_m3=15)
    base.update(kw)
    return JobParameters(**base)


def industrial(**kw):
    base = dict(regime="industrial", installation_type="new", zone_type="Type A",
                gauge="electronic05", test_medium="air", mop_mbar=21)
    base.update(kw)
    return JobParameters(**base)


def test_strength_low_mop_uses_floor():
    spec = resolve_test_spec(0.09, commercial(mop_mbar=21), "strength")
    assert spec.test_pressure_mbar == 82.5
    assert spec.max_pressure_drop_mbar == pytest.approx(16.5)
    assert spec.stabilization_s == 300
    assert spec.duration_s == 300


def test_strength_scales_with_mop():
    assert resolve_test_spec(0.09, commercial(mop_mbar=50), "strength").test_pressure_mbar == 125.0


def test_commercial_strength_stabilization_fixed():
    assert resolve_test_spec(0.5, commercial(mop_mbar=150), "strength").stabilization_s == 300


def test_industrial_strength_stabilization_by_mop():
    assert resolve_test_spec(0.5, industrial(mop_mbar=50), "strength").stabilization_s == 300
    assert resolve_test_spec(0.5, industrial(mop_mbar=150), "strength").stabilization_s == 600


def test_industrial_strength_honours_mip():
    assert resolve_test_spec(0.5, industrial(mop_mbar=21, mip_mbar=100), "strength").test_pressure_mbar == pytest.approx(110.0)
    assert resolve_test_spec(0.5, commercial(mop_mbar=21, mip_mbar=100), "strength").test_pressure_mbar == 82.5


def test_commercial_new_tightness():
    spec = resolve_test_spec(0.090, commercial(), "tightness")
    assert spec.test_pressure_mbar == 21
    assert spec.duration_s == 180
    assert spec.stabilization_s == 360
    assert spec.max_pressure_drop_mbar == 1.0
    assert "0.15" in spec.source


def test_commercial_tightness_pressure_floor():
    assert resolve_test_spec(0.09, commercial(mop_mbar=15), "tightness").test_pressure_mbar == 20


def test_commercial_new_tightness_follows_gauge():
    assert resolve_test_spec(0.5, commercial(gauge="electronicDecimal"), "tightness").duration_s == 240
    assert resolve_test_spec(0.5, commercial(gauge="water gauge"), "tightness").duration_s == 17 * 60


def test_commercial_existing_tightness_follows_medium():
    assert resolve_test_spec(0.2, commercial(installation_type="existing", test_medium="air"), "tightness").duration_s == 180
    assert resolve_test_spec(0.2, commercial(installation_type="existing", test_medium="gas"), "tightness").duration_s == 120


def test_commercial_tightness_needs_room_volume():
    with pytest.raises(ValidationError, match="Room volume"):
        resolve_test_spec(0.09, commercial(room_volume_m3=None), "tightness")


@pytest.mark.parametrize("iv", [0, -0.1, float("nan")])
def test_non_positive_iv_rejected(iv):
    with pytest.raises(ValidationError):
        resolve_test_spec(iv, commercial(), "strength")


@pytest.mark.parametrize("test_type", ["strength", "tightness", "let_by"])
def test_commercial_ceiling_blocks_every_test(test_type):
    with pytest.raises(RegimeViolation) as exc:
        resolve_test_spec(1.05, commercial(), test_type)
    assert exc.value.installation_volume == pytest.approx(1.05)
    assert "industrial" in exc.value.directive


def test_industrial_has_no_ceiling():
    spec = resolve_test_spec(1.05, industrial(), "strength")
    assert spec.regime == "industrial"


def test_type_a_ttd_and_drop():
    spec = resolve_test_spec(0.5, industrial(), "tightness")
    assert spec.duration_s == pytest.approx(0.5 * 0.5 * 67 * 60)
    assert spec.stabilization_s == pytest.approx(1005)
    assert spec.mplr_m3h == 0.0014
    assert spec.max_pressure_drop_mbar == pytest.approx(0.0014 * 16.75 / (0.094 * 0.5))


def test_type_a_drop_matches_mplr_leak_rate():
    spec = resolve_test_spec(0.8, industrial(test_medium="gas", installation_type="existing"), "tightness")
    lr = leakage_rate(spec.max_pressure_drop_mbar, 0.8, spec.duration_s, "gas")
    assert lr == pytest.approx(0.0028)


def test_type_b_existing_uses_room_volume():
    p = industrial(zone_type="Type B", installation_type="existing", test_medium="gas", room_volume_m3=20)
    spec = resolve_test_spec(2.0, p, "tightness")
    assert spec.duration_s == pytest.approx(2.8 * 0.5 * 2.0 / 20 * 42 * 60)
    assert spec.stabilization_s == 900


def test_type_b_requires_room_volume():
    p = industrial(zone_type="B", installation_type="existing")
    with pytest.raises(ValidationError, match="Room volume"):
        resolve_test_spec(2.0, p, "tightness")


def test_type_b_large_room_directed_to_type_c():
    p = industrial(zone_type="Type B", installation_type="existing", room_volume_m3=60)
    with pytest.raises(ValidationError, match="Type C"):
        resolve_test_spec(2.0, p, "tightness")


def test_type_b_new_timed_as_type_a():
    p = industrial(zone_type="Type B", installation_type="new", gauge=0.1, test_medium="gas")
    assert resolve_test_spec(1.0, p, "tightness").duration_s == pytest.approx(252)


def test_type_c_ttd():
    spec = resolve_test_spec(10.0, industrial(zone_type="Type C"), "tightness")
    assert spec.duration_s == pytest.approx(0.047 * 0.5 * 10 * 67 * 60)


@pytest.mark.parametrize("zone,extra", [
    ("Type A", {}),
    ("Type B", {"installation_type": "existing", "room_volume_m3": 50}),
    ("Type C", {}),
])
@pytest.mark.parametrize("iv", [0.0001, 0.01, 0.05])
def test_ttd_never_below_two_minutes(zone, extra, iv):
    p = industrial(zone_type=zone, gauge="electronicDecimal", test_medium="gas", **extra)
    assert resolve_test_spec(iv, p, "tightness").duration_s >= 120


def test_industrial_tightness_stabilization_minimum():
    spec = resolve_test_spec(0.1, industrial(), "tightness")
    assert spec.duration_s == pytest.approx(0.5 * 0.1 * 67 * 60)
    assert spec.stabilization_s == 900


def test_industrial_tightness_needs_zone():
    with pytest.raises(ValidationError, match="Zone"):
        resolve_test_spec(0.5, industrial(zone_type=None), "tightness")


def test_commercial_let_by():
    spec = resolve_test_spec(0.6, commercial(mop_mbar=21), "let_by")
    assert spec.test_pressure_mbar == 10.5
    assert spec.duration_s == 180
    assert spec.stabilization_s == 0
    assert spec.max_pressure_drop_mbar == 0


def test_industrial_let_by_lasts_one_ttd():
    spec = resolve_test_spec(0.5, industrial(), "let-by")
    assert spec.test_type == "let_by"
    assert spec.duration_s == pytest.approx(1005)


def test_unknown_test_type_rejected():
    with pytest.raises(ValidationError):
        resolve_test_spec(0.5, commercial(), "purge")
