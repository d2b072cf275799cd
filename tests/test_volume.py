import pytest

from upcalc.errors import ValidationError
from upcalc.models import MeterConfig, PipeSection, PurgeConduit
from upcalc.volume import (
    compute_installation_volume,
    largest_pipe_diameter,
    meter_volume,
    normalize_size_key,
    pipe_section_volume,
)


@pytest.mark.parametrize("raw", ["100", "100mm", " 100 MM ", "100 mm", 100, 100.0])
def test_size_keys_normalise_to_one_form(raw):
    assert normalize_size_key(raw) == "100"
    assert PipeSection("steel", raw, 1.0).nominal_size == "100"


@pytest.mark.parametrize("raw", ["", "abc", "100in", "-20", True])
def test_bad_size_keys_rejected(raw):
    with pytest.raises(ValidationError):
        normalize_size_key(raw)


def test_steel_100mm_ten_metres():
    iv = compute_installation_volume([PipeSection("steel", "100", 10)], MeterConfig())
    assert iv.pipe_volume == pytest.approx(0.090)
    assert iv.meter_volume == 0.0
    assert iv.total == pytest.approx(0.090)


def test_pipe_volume_zero_at_zero_length_and_increasing():
    vols = [pipe_section_volume(PipeSection("copper", "22mm", length)) for length in (0, 0.5, 1, 2.5, 10, 40)]
    assert vols[0] == 0.0
    assert all(b > a for a, b in zip(vols, vols[1:]))


def test_pipe_volume_linear_in_each_section():
    a = compute_installation_volume([PipeSection("steel", "50", 4), PipeSection("copper", "28", 3)])
    b = compute_installation_volume([PipeSection("steel", "50", 8), PipeSection("copper", "28", 3)])
    assert b.pipe_volume - a.pipe_volume == pytest.approx(0.0024 * 4)


def test_fittings_allowance_applies_before_meter():
    iv = compute_installation_volume(
        [PipeSection("steel", "50", 10)],
        MeterConfig("U16", 2),
        fittings_allowance=True,
    )
    assert iv.pipe_volume == pytest.approx(0.024)
    assert iv.fittings_volume == pytest.approx(0.0024)
    assert iv.pipe_component == pytest.approx(0.0264)
    assert iv.meter_volume == pytest.approx(0.05)
    assert iv.total == pytest.approx(iv.pipe_component + iv.meter_volume)


def test_breakdown_lists_each_section():
    iv = compute_installation_volume([PipeSection("steel", "25", 2), PipeSection("copper", "15", 5)])
    assert [row["nominal_size"] for row in iv.pipes] == ["25", "15"]
    assert iv.pipes[0]["volume_per_metre_m3"] == 0.00064
    assert iv.pipes[1]["volume_m3"] == pytest.approx(0.0007)
    d = iv.to_dict()
    assert d["total"] == pytest.approx(iv.total)
    assert d["pipe_component"] == pytest.approx(iv.pipe_volume)


def test_unknown_size_raises_in_strict_mode():
    with pytest.raises(ValidationError, match="200"):
        compute_installation_volume([PipeSection("steel", "200", 5)], profile="commercial")


def test_industrial_tables_cover_large_bore():
    iv = compute_installation_volume([PipeSection("steel", "200", 5)], profile="industrial")
    assert iv.total == pytest.approx(0.175)


def test_unknown_size_flagged_not_summed_when_lenient():
    iv = compute_installation_volume(
        [PipeSection("steel", "100", 10), PipeSection("copper", "76", 3)],
        profile="commercial",
        strict=False,
    )
    assert iv.pipe_volume == pytest.approx(0.09)
    assert len(iv.unrecognised) == 1
    assert iv.unrecognised[0]["nominal_size"] == "76"


def test_meter_volume_by_type_and_quantity():
    assert meter_volume(MeterConfig("none", 3)) == 0.0
    assert meter_volume(MeterConfig("u16", 1)) == pytest.approx(0.025)
    assert meter_volume(MeterConfig("G4/U6", 3), "industrial") == pytest.approx(0.024)
    assert meter_volume(MeterConfig("Domestic", 1), "commercial") == pytest.approx(0.0024)


def test_unknown_meter_rejected():
    with pytest.raises(ValidationError, match="meter"):
        meter_volume(MeterConfig("Domestic", 1), "industrial")


def test_invalid_sections_rejected():
    with pytest.raises(ValidationError):
        PipeSection("steel", "100", -1)
    with pytest.raises(ValidationError):
        PipeSection("lead", "100", 1)
    with pytest.raises(ValidationError):
        MeterConfig("U16", -1)


def test_largest_diameter_includes_conduits():
    pipes = [PipeSection("steel", "50", 3), PipeSection("steel", "80", 1)]
    assert largest_pipe_diameter(pipes) == 80
    assert largest_pipe_diameter(pipes, [PurgeConduit("stack", 100, 2), None]) == 100
    with pytest.raises(ValidationError):
        largest_pipe_diameter([])
