import math

import pytest

from upcalc.errors import LookupGap, ValidationError
from upcalc.models import PurgeConduit
from upcalc.purge import compute_purge, conduit_volume, format_mmss, velocity_flow_rate


def test_80mm_selects_11_m3h():
    spec = compute_purge(0.05, largest_pipe_diameter=80)
    assert spec.table_diameter_mm == 80
    assert spec.minimum_flow_rate_m3h == 11


def test_diameter_rounds_up_to_next_row():
    spec = compute_purge(0.05, largest_pipe_diameter=65)
    assert spec.table_diameter_mm == 80
    assert compute_purge(0.05, largest_pipe_diameter=15).table_diameter_mm == 20


def test_purge_volume_and_time_without_conduits():
    spec = compute_purge(0.1, largest_pipe_diameter=80)
    assert spec.purge_volume_m3 == pytest.approx(0.15)
    assert spec.max_purge_time_s == pytest.approx(0.15 * 3600 / 11)
    assert spec.max_purge_time == "00:49"


def test_conduits_add_cylinder_volume():
    hose = PurgeConduit("hose", 25, 10)
    expected = math.pi * 0.0125 ** 2 * 10
    assert conduit_volume([hose, None]) == pytest.approx(expected)
    spec = compute_purge(0.1, hose=hose, largest_pipe_diameter=50)
    assert spec.conduit_volume_m3 == pytest.approx(expected)
    assert spec.purge_volume_m3 == pytest.approx((0.1 + expected) * 1.5)


def test_largest_of_pipe_hose_and_stack_sets_flow():
    spec = compute_purge(
        0.2,
        hose=PurgeConduit("hose", 20, 5),
        stack=PurgeConduit("stack", 100, 3),
        largest_pipe_diameter=50,
    )
    assert spec.largest_diameter_mm == 100
    assert spec.minimum_flow_rate_m3h == 20


def test_b13_fitting_sizes():
    spec = compute_purge(0.05, largest_pipe_diameter=80)
    assert (spec.purge_point_mm, spec.hose_vent_stack_mm, spec.flame_arrestor_mm) == (25, 40, 50)


def test_direction_sets_gas_content_limit():
    assert compute_purge(0.05, largest_pipe_diameter=50).gas_content_limit_pct == 90
    spec = compute_purge(0.05, largest_pipe_diameter=50, purge_direction="gas-to-air")
    assert spec.purge_direction == "gas_to_air"
    assert spec.gas_content_limit_pct == 1.8


def test_oversize_diameter_is_a_lookup_gap():
    with pytest.raises(LookupGap):
        compute_purge(0.5, largest_pipe_diameter=200)


def test_invalid_inputs_rejected():
    with pytest.raises(ValidationError):
        compute_purge(0.5, largest_pipe_diameter=0)
    with pytest.raises(ValidationError):
        compute_purge(0.0, largest_pipe_diameter=50)
    with pytest.raises(ValidationError):
        compute_purge(0.5)
    with pytest.raises(ValidationError):
        compute_purge(0.5, largest_pipe_diameter=50, purge_direction="sideways")


@pytest.mark.parametrize("seconds,text", [(0, "00:00"), (49.09, "00:49"), (59.6, "01:00"),
                                          (125.4, "02:05"), (3725, "62:05")])
def test_format_mmss(seconds, text):
    assert format_mmss(seconds) == text


def test_velocity_rule_beyond_b13():
    spec = compute_purge(0.5, largest_pipe_diameter=200, velocity_m_s=0.25)
    assert spec.minimum_flow_rate_m3h == pytest.approx(math.pi * 0.1 ** 2 * 0.25 * 3600)
    assert spec.table_diameter_mm == 200
    assert spec.flow_source == "0.25 m/s in 200 mm bore"
    assert (spec.purge_point_mm, spec.hose_vent_stack_mm, spec.flame_arrestor_mm) == (40, 50, 50)
    assert spec.max_purge_time_s == pytest.approx(0.75 * 3600 / spec.minimum_flow_rate_m3h)


def test_velocity_rule_keeps_b13_within_table():
    spec = compute_purge(0.5, largest_pipe_diameter=150, velocity_m_s=0.25)
    assert spec.minimum_flow_rate_m3h == 38
    assert spec.flow_source == "Table B13"


def test_velocity_flow_rate():
    assert velocity_flow_rate(300) == pytest.approx(math.pi * 0.15 ** 2 * 900)
    assert velocity_flow_rate(100, 0.5) == pytest.approx(2 * velocity_flow_rate(100))
