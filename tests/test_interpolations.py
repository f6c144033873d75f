import sys
import os
import numpy as np
import unittest

# Ensure src is in path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from interpolations import (
    INTERPOLATIONS,
    get_interpolation,
    linear_interpolation,
    rectangular_interpolation,
    spline_interpolation,
    smooth_spline_interpolation,
    make_triangular_interpolation,
    make_distance_weighted_interpolation,
)


class TestInterpolations(unittest.TestCase):
    def setUp(self):
        self.x = np.array([0.0, 1.0, 2.0, 3.0, 4.0])
        self.y = np.array([10.0, 20.0, 30.0, 40.0, 50.0])

    def test_linear_midpoints(self):
        preds = linear_interpolation(self.x, self.y, [0.5, 2.5])
        np.testing.assert_array_equal(preds, [15.0, 35.0])

    def test_linear_boundary_hold(self):
        preds = linear_interpolation(self.x, self.y, [-10, 100])
        np.testing.assert_array_equal(preds, [10.0, 50.0])

    def test_linear_unsorted_input_and_query(self):
        order = np.array([3, 0, 4, 1, 2])
        preds = linear_interpolation(self.x[order], self.y[order], [3.5, 0.25, 1.0])
        np.testing.assert_allclose(preds, [45.0, 12.5, 20.0])

    def test_ties_are_averaged(self):
        x = [0.0, 1.0, 1.0, 2.0]
        y = [0.0, 10.0, 20.0, 30.0]
        self.assertEqual(linear_interpolation(x, y, [1.0])[0], 15.0)

    def test_nan_pairs_dropped(self):
        x = [0.0, 1.0, np.nan, 2.0]
        y = [0.0, np.nan, 5.0, 20.0]
        self.assertEqual(linear_interpolation(x, y, [1.0])[0], 10.0)

    def test_degenerate_inputs(self):
        np.testing.assert_array_equal(linear_interpolation([3.0], [7.0], [0, 5, 10]), [7.0, 7.0, 7.0])
        self.assertTrue(np.isnan(spline_interpolation([], [], [1.0])).all())

    def test_mismatched_lengths(self):
        with self.assertRaises(ValueError):
            linear_interpolation([0, 1, 2], [1, 2], [0.5])

    def test_rectangular_step(self):
        preds = rectangular_interpolation(self.x, self.y, [-1.0, 0.0, 0.9, 1.0, 3.99, 7.0])
        np.testing.assert_array_equal(preds, [10.0, 10.0, 10.0, 20.0, 40.0, 50.0])

    def test_spline_reproduces_cubic(self):
        # not-a-knot cubic splines are exact for cubic polynomials
        x = np.linspace(0, 5, 8)
        y = x**3 - 2 * x + 1
        q = np.array([0.3, 2.2, 4.9, 6.0])
        np.testing.assert_allclose(spline_interpolation(x, y, q), q**3 - 2 * q + 1, rtol=1e-8)

    def test_spline_two_points_is_linear(self):
        np.testing.assert_allclose(spline_interpolation([0, 2], [0, 10], [1, 4]), [5.0, 20.0])

    def test_smooth_spline_on_line(self):
        # A line has no roughness penalty, so the smoother returns it
        x = np.linspace(0, 19, 20) * 86400.0
        y = 3.0 + 0.5 * np.arange(20)
        q = np.array([2.5, 10.25]) * 86400.0
        np.testing.assert_allclose(smooth_spline_interpolation(x, y, q), [4.25, 8.125], atol=1e-4)

    def test_smooth_spline_falls_back_to_linear(self):
        preds = smooth_spline_interpolation([0, 1, 2], [0, 10, 0], [0.5])
        self.assertEqual(preds[0], 5.0)

    def test_triangular(self):
        tri = make_triangular_interpolation(period=2.0)
        preds = tri([0.0, 2.0], [0.0, 10.0], [1.0, 0.0, 10.0])
        # midpoint: equal weights; exact hit: the other point is at the window edge; far: nearest
        np.testing.assert_allclose(preds, [5.0, 0.0, 10.0])

    def test_triangular_bad_period(self):
        with self.assertRaises(ValueError):
            make_triangular_interpolation(period=0)

    def test_distance_weighted(self):
        idw = make_distance_weighted_interpolation(power=1)
        preds = idw([0.0, 2.0], [0.0, 10.0], [1.0, 0.0, 3.0])
        np.testing.assert_allclose(preds, [5.0, 0.0, 7.5])

    def test_registry_contract(self):
        """Every registered engine returns one value per query, in query order"""
        q = np.array([3.5, 0.5, 2.0, 9.0])
        for name, engine in INTERPOLATIONS.items():
            preds = engine(self.x, self.y, q)
            self.assertEqual(len(preds), len(q), name)
            reversed_preds = engine(self.x, self.y, q[::-1])
            np.testing.assert_allclose(reversed_preds[::-1], preds, err_msg=name)

    def test_get_interpolation(self):
        self.assertIs(get_interpolation('linear'), linear_interpolation)
        self.assertIs(get_interpolation(rectangular_interpolation), rectangular_interpolation)
        with self.assertRaises(ValueError):
            get_interpolation('cubic-ish')
        with self.assertRaises(ValueError):
            get_interpolation(42)


if __name__ == '__main__':
    unittest.main()
