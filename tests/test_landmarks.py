"""Tests for landmark validation and index conventions."""

from types import SimpleNamespace

import numpy as np
import pytest

from tree_gesture.errors import MalformedDetection
from tree_gesture.landmarks import HandLandmark, as_landmark_set


def make_landmarks(n=21, seed=0):
    rng = np.random.RandomState(seed)
    return rng.rand(n, 3).astype(np.float32)


class TestHandLandmark:
    def test_fingertips_exclude_thumb(self):
        assert HandLandmark.FINGERTIPS == (8, 12, 16, 20)
        assert HandLandmark.THUMB_TIP not in HandLandmark.FINGERTIPS

    def test_required_indices(self):
        assert set(HandLandmark.REQUIRED) == {0, 9, 8, 12, 16, 20}

    def test_anatomy(self):
        assert HandLandmark.WRIST == 0
        assert HandLandmark.MIDDLE_MCP == 9
        assert HandLandmark.NUM_LANDMARKS == 21


class TestAsLandmarkSet:
    def test_array_passthrough(self):
        lm = make_landmarks()
        out = as_landmark_set(lm)
        assert out.shape == (21, 3)
        assert out.dtype == np.float32
        np.testing.assert_array_equal(out, lm)

    def test_nested_lists(self):
        lm = make_landmarks()
        out = as_landmark_set(lm.tolist())
        np.testing.assert_allclose(out, lm)

    def test_attribute_points(self):
        points = [SimpleNamespace(x=i * 0.01, y=0.5, z=-0.1) for i in range(21)]
        out = as_landmark_set(points)
        assert out.shape == (21, 3)
        assert out[20, 0] == pytest.approx(0.2)
        assert out[3, 2] == pytest.approx(-0.1)

    def test_extra_points_dropped(self):
        out = as_landmark_set(make_landmarks(n=42))
        assert out.shape == (21, 3)

    def test_too_few_points(self):
        with pytest.raises(MalformedDetection):
            as_landmark_set(make_landmarks(n=20))

    def test_empty(self):
        with pytest.raises(MalformedDetection):
            as_landmark_set([])

    def test_none(self):
        with pytest.raises(MalformedDetection):
            as_landmark_set(None)

    def test_wrong_width(self):
        with pytest.raises(MalformedDetection):
            as_landmark_set(np.zeros((21, 2)))

    def test_ragged_rows(self):
        rows = make_landmarks().tolist()
        rows[5] = [0.1, 0.2]
        with pytest.raises(MalformedDetection):
            as_landmark_set(rows)

    @pytest.mark.parametrize("index", [0, 8, 9, 12, 16, 20])
    def test_non_finite_required_point(self, index):
        lm = make_landmarks()
        lm[index, 1] = np.nan
        with pytest.raises(MalformedDetection):
            as_landmark_set(lm)

    def test_non_finite_unused_point_allowed(self):
        lm = make_landmarks()
        lm[3] = np.inf  # thumb IP is never read
        assert as_landmark_set(lm).shape == (21, 3)

    def test_is_malformed_value_error(self):
        with pytest.raises(ValueError):
            as_landmark_set(make_landmarks(n=3))
