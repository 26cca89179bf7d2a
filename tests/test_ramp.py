"""Tests for color ramps."""

import numpy as np
import pytest

from nwpanim.ramp import ColorRamp, builtin_ramps, load_color_ramp

RAMP_TEXT = """
# value R G B [A]
0    0   0   0
10,  100, 200, 250
nv   1 2 3 4
"""


@pytest.fixture
def ramp():
    return ColorRamp.from_text(RAMP_TEXT)


class TestParse:
    def test_from_text(self, ramp):
        assert ramp.values == [0.0, 10.0]
        assert ramp.colors == [(0, 0, 0, 255), (100, 200, 250, 255)]
        assert ramp.nodata_color == (1, 2, 3, 4)

    def test_alpha_column(self):
        ramp = ColorRamp.from_text("0 10 20 30 40\n5 50 60 70 80\n")
        assert ramp.colors[1] == (50, 60, 70, 80)
        assert ramp.nodata_color == (0, 0, 0, 0)

    def test_descending_values(self):
        with pytest.raises(ValueError, match="ascending"):
            ColorRamp.from_text("10 0 0 0\n5 255 255 255\n")

    def test_wrong_column_count(self):
        with pytest.raises(ValueError, match="Line 1"):
            ColorRamp.from_text("10 0 0\n")

    def test_component_out_of_range(self):
        with pytest.raises(ValueError, match="0..255"):
            ColorRamp.from_text("0 0 0 256\n")

    def test_invalid_value(self):
        with pytest.raises(ValueError, match="invalid value"):
            ColorRamp.from_text("ten 0 0 0\n")

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf"])
    def test_non_finite_value(self, value):
        with pytest.raises(ValueError, match="finite"):
            ColorRamp.from_text(f"0 0 0 0\n{value} 255 255 255\n")

    def test_no_entries(self):
        with pytest.raises(ValueError, match="at least one"):
            ColorRamp.from_text("# empty\nnv 0 0 0 0\n")

    def test_to_text_round_trip(self, ramp):
        assert ColorRamp.from_text(ramp.to_text()) == ramp

    def test_from_file(self, tmp_path, ramp):
        path = tmp_path / "ramp.txt"
        path.write_text(RAMP_TEXT)
        assert load_color_ramp(path) == ramp


class TestApply:
    def test_interpolate(self, ramp):
        data = np.array([[0.0, 5.0], [10.0, 2.5]])
        rgba = ramp.apply(data)

        assert rgba.shape == (4, 2, 2)
        assert rgba.dtype == np.uint8
        assert tuple(rgba[:, 0, 1]) == (50, 100, 125, 255)
        assert tuple(rgba[:, 1, 0]) == (100, 200, 250, 255)
        assert tuple(rgba[:, 1, 1]) == (25, 50, 62, 255)

    def test_interpolate_clamps_to_end_colors(self, ramp):
        rgba = ramp.apply(np.array([[-5.0, 99.0]]))
        assert tuple(rgba[:, 0, 0]) == (0, 0, 0, 255)
        assert tuple(rgba[:, 0, 1]) == (100, 200, 250, 255)

    def test_nan_uses_nodata_color(self, ramp):
        rgba = ramp.apply(np.array([[np.nan, 10.0]]))
        assert tuple(rgba[:, 0, 0]) == (1, 2, 3, 4)
        assert tuple(rgba[:, 0, 1]) == (100, 200, 250, 255)

    def test_exact(self, ramp):
        rgba = ramp.apply(np.array([[0.0, 5.0, 10.0]]), mode="exact")
        assert tuple(rgba[:, 0, 0]) == (0, 0, 0, 255)
        assert tuple(rgba[:, 0, 1]) == (1, 2, 3, 4)
        assert tuple(rgba[:, 0, 2]) == (100, 200, 250, 255)

    def test_nearest(self, ramp):
        rgba = ramp.apply(np.array([[3.0, 7.0, -20.0, 50.0]]), mode="nearest")
        assert tuple(rgba[:, 0, 0]) == (0, 0, 0, 255)
        assert tuple(rgba[:, 0, 1]) == (100, 200, 250, 255)
        assert tuple(rgba[:, 0, 2]) == (0, 0, 0, 255)
        assert tuple(rgba[:, 0, 3]) == (100, 200, 250, 255)

    def test_unknown_mode(self, ramp):
        with pytest.raises(ValueError, match="Unknown color mode"):
            ramp.apply(np.zeros((1, 1)), mode="cubic")

    def test_single_entry(self):
        ramp = ColorRamp.from_text("5 10 20 30\n")
        rgba = ramp.apply(np.array([[0.0, 5.0, 9.0]]))
        assert (rgba[:3] == np.array([10, 20, 30])[:, None, None]).all()


class TestBuiltin:
    def test_pwat_available(self):
        assert "pwat" in builtin_ramps()

    def test_pwat_ramp(self):
        ramp = ColorRamp.builtin("pwat")
        assert ramp.values[0] == 0
        assert ramp.values == sorted(ramp.values)
        assert ramp.nodata_color == (0, 0, 0, 0)

    def test_load_by_name(self):
        assert load_color_ramp("pwat") == ColorRamp.builtin("pwat")

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown built-in color ramp"):
            load_color_ramp("does-not-exist")
