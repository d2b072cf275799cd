import dataclasses
import math

import pytest

from upcalc.errors import RegimeViolation, SequenceViolation, ValidationError
from upcalc.models import ActualReading, JobDetails, JobParameters, MeterConfig, PipeSection
from upcalc.workflow import Sequencer


def make_seq(kind="new", length=10.0, **params):
    p = dict(gauge="electronic05", test_medium="air", mop_mbar=21, room_volume_m3=15,
             fittings_allowance=False)
    p.update(params)
    seq = Sequencer(JobDetails(job_number="J-1"), "commercial")
    seq.update_configuration(
        pipes=[PipeSection("steel", "100", length)],
        meter=MeterConfig(),
        params=JobParameters(**p),
    )
    seq.choose_installation_type(kind)
    return seq


def pass_strength(seq):
    seq.select_test("strength")
    seq.configure()
    return seq.submit_reading(ActualReading(pressure_drop_mbar=1.0))


def test_select_requires_installation_type():
    seq = Sequencer()
    with pytest.raises(SequenceViolation):
        seq.select_test("strength")
    assert seq.available_tests() == []


def test_full_new_installation_sequence():
    seq = make_seq("new")
    assert seq.available_tests() == ["strength", "tightness", "purge"]

    out = pass_strength(seq)
    assert out.result == "PASS"
    assert seq.state.stage == "evaluated"
    assert seq.next_test() == "tightness"

    assert seq.select_test("tightness") == "test_selected"
    spec = seq.configure()
    assert spec.max_pressure_drop_mbar == 1.0
    assert seq.state.stage == "awaiting_reading"
    assert seq.submit_reading({"pressure_drop_mbar": 0.5}).passed
    assert seq.next_test() == "purge"

    seq.select_test("purge")
    purge = seq.configure(purge_direction="air_to_gas")
    assert purge.minimum_flow_rate_m3h == 20
    assert seq.submit_reading(ActualReading(flow_rate_m3h=21, gas_content_pct=95)).passed
    assert seq.next_test() is None
    assert [o.test_type for o in seq.state.outcomes] == ["strength", "tightness", "purge"]


def test_new_installation_never_needs_let_by():
    seq = make_seq("new")
    seq.select_test("tightness")
    assert not seq.requires_let_by()
    assert seq.configure().test_type == "tightness"
    with pytest.raises(SequenceViolation):
        seq.let_by_spec()


def test_existing_installation_always_needs_let_by():
    seq = make_seq("existing")
    assert seq.select_test("tightness") == "let_by_pending"
    with pytest.raises(SequenceViolation, match="let-by"):
        seq.configure()

    spec = seq.let_by_spec()
    assert spec.test_pressure_mbar == 10.5
    fail = seq.record_let_by(ActualReading(let_by_pressure_change_mbar=0.3))
    assert fail.result == "FAIL"
    assert seq.state.stage == "let_by_done"
    with pytest.raises(SequenceViolation):
        seq.configure()

    assert seq.record_let_by({"let_by_pressure_change_mbar": 0}).passed
    assert seq.configure().test_type == "tightness"
    out = seq.submit_reading(ActualReading(pressure_drop_mbar=0.2))
    assert out.passed
    assert [o.test_type for o in seq.state.outcomes] == ["let_by", "let_by", "tightness"]


def test_failed_test_does_not_unlock_next():
    seq = make_seq()
    seq.select_test("strength")
    seq.configure()
    assert seq.submit_reading(ActualReading(pressure_drop_mbar=20)).result == "FAIL"
    assert seq.next_test() is None
    with pytest.raises(SequenceViolation):
        seq.select_test("tightness")
    assert seq.select_test("strength") == "test_selected"


def test_cannot_switch_test_mid_way():
    seq = make_seq()
    seq.select_test("strength")
    with pytest.raises(SequenceViolation, match="abandon"):
        seq.select_test("tightness")


def test_submit_requires_configured_test():
    seq = make_seq()
    seq.select_test("strength")
    with pytest.raises(SequenceViolation):
        seq.submit_reading(ActualReading(pressure_drop_mbar=1))


def test_regime_gate_fires_on_every_mutation():
    seq = make_seq(length=100)
    assert not seq.is_blocked
    seq.select_test("strength")
    seq.configure()

    seq.update_configuration(meter=MeterConfig("U100", 1))
    assert seq.is_blocked
    assert "industrial" in seq.directive
    assert seq.state.pending == {}
    with pytest.raises(RegimeViolation):
        seq.configure()
    with pytest.raises(RegimeViolation):
        seq.submit_reading(ActualReading(pressure_drop_mbar=1))

    seq.update_configuration(meter=MeterConfig())
    assert not seq.is_blocked
    assert seq.state.pending["strength"].installation_volume_m3 == pytest.approx(0.9)


def test_gate_blocks_from_the_start():
    seq = make_seq(length=120)
    assert seq.state.installation_volume.total == pytest.approx(1.08)
    with pytest.raises(RegimeViolation):
        seq.select_test("strength")
    seq.switch_regime("industrial")
    assert not seq.is_blocked
    assert seq.select_test("strength") == "test_selected"
    assert seq.configure().regime == "industrial"


def test_gauge_change_recomputes_pending_spec_in_place():
    seq = make_seq()
    first = pass_strength(seq)
    seq.select_test("tightness")
    assert seq.configure().duration_s == 180

    seq.update_configuration(params=dataclasses.replace(seq.params, gauge="electronicDecimal"))
    assert seq.state.pending["tightness"].duration_s == 120
    assert seq.state.outcomes == [first]
    assert seq.latest_outcomes()["strength"] is first


def test_submit_uses_configuration_in_force():
    seq = make_seq()
    seq.select_test("strength")
    seq.configure()
    seq.update_configuration(pipes=[PipeSection("steel", "100", 20)])
    out = seq.submit_reading(ActualReading(pressure_drop_mbar=1))
    assert out.spec.installation_volume_m3 == pytest.approx(0.18)


def test_abandon_keeps_prior_outcomes():
    seq = make_seq()
    pass_strength(seq)
    seq.select_test("tightness")
    seq.configure()
    seq.abandon()
    assert seq.state.stage == "installation_type_chosen"
    assert seq.state.active_test is None
    assert "tightness" not in seq.state.pending
    assert [o.test_type for o in seq.state.outcomes] == ["strength"]
    assert "tightness" in seq.available_tests()


def test_outcomes_are_immutable():
    seq = make_seq()
    out = pass_strength(seq)
    with pytest.raises(dataclasses.FrozenInstanceError):
        out.result = "FAIL"


def test_installation_type_fixed_once_testing_starts():
    seq = make_seq()
    seq.select_test("strength")
    with pytest.raises(SequenceViolation):
        seq.choose_installation_type("existing")


def test_clear_all_resets():
    seq = make_seq()
    pass_strength(seq)
    seq.clear_all()
    assert seq.state.stage == "job_setup"
    assert seq.state.outcomes == []
    assert seq.pipes == []
    assert seq.params is None
    assert seq.job.job_number == "J-1"


def test_invalid_update_leaves_configuration_untouched():
    seq = make_seq()
    before = list(seq.pipes)
    with pytest.raises(ValueError):
        seq.update_configuration(pipes=[PipeSection("steel", "300", 1)])
    assert seq.pipes == before


def test_summary():
    seq = make_seq()
    pass_strength(seq)
    s = seq.summary()
    assert s["stage"] == "evaluated"
    assert s["next_test"] == "tightness"
    assert s["results"] == {"strength": "PASS"}
    assert s["installation_volume_m3"] == pytest.approx(0.09)


def make_industrial(size="200", length=10.0):
    seq = Sequencer(JobDetails(job_number="J-2"), "industrial")
    seq.update_configuration(
        pipes=[PipeSection("steel", size, length)],
        params=JobParameters(zone_type="Type A", fittings_allowance=False),
    )
    seq.choose_installation_type("new")
    return seq


def test_failed_regime_switch_keeps_current_regime():
    seq = make_industrial()
    with pytest.raises(ValidationError, match="200"):
        seq.switch_regime("commercial")
    assert seq.profile.name == "industrial"
    assert seq.params.regime == "industrial"
    assert seq.state.installation_volume.total == pytest.approx(0.35)
    assert seq.select_test("strength") == "test_selected"
    assert seq.configure().regime == "industrial"


def test_failed_configure_leaves_stage_alone():
    seq = make_seq(room_volume_m3=None)
    seq.select_test("tightness")
    with pytest.raises(ValidationError, match="Room volume"):
        seq.configure()
    assert seq.state.stage == "test_selected"
    assert "tightness" not in seq.state.pending


def test_industrial_large_bore_purge_completes():
    seq = make_industrial()
    seq.select_test("purge")
    spec = seq.configure()
    assert spec.minimum_flow_rate_m3h == pytest.approx(math.pi * 0.1 ** 2 * 0.25 * 3600)
    assert seq.submit_reading(ActualReading(flow_rate_m3h=30, gas_content_pct=95)).passed
