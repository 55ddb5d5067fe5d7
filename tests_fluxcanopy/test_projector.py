import unittest
import numpy as np
from fluxcanopy.exceptions import DegenerateFootprint, InvalidContour
from fluxcanopy.projector import (
    calibrate,
    check_contour_in_field,
    extract_contour,
    to_spatial_field,
)

CRS = "EPSG:32612"
TOWER = (500000.0, 4400000.0)


class TestCalibrate(unittest.TestCase):
    def test_sums_to_one(self):
        rng = np.random.default_rng(3)
        grid = calibrate(rng.uniform(0, 5, (20, 30)))
        self.assertAlmostEqual(grid.sum(), 1.0)
        self.assertTrue(np.all(grid >= 0))

    def test_uniform_block(self):
        raw = np.zeros((30, 30))
        raw[10:20, 5:15] = 4.0
        grid = calibrate(raw)
        np.testing.assert_array_equal(grid[10:20, 5:15], np.full((10, 10), 1 / 100))
        self.assertEqual(np.count_nonzero(grid), 100)

    def test_negative_values_clamped(self):
        grid = calibrate(np.array([[-1.0, 1.0], [3.0, 0.0]]))
        np.testing.assert_allclose(grid, [[0.0, 0.25], [0.75, 0.0]])

    def test_degenerate_grid(self):
        with self.assertRaises(DegenerateFootprint):
            calibrate(np.zeros((5, 5)))
        with self.assertRaises(DegenerateFootprint):
            calibrate(-np.ones((5, 5)))
        grid = np.ones((5, 5))
        grid[2, 2] = np.nan
        with self.assertRaises(DegenerateFootprint):
            calibrate(grid)


class TestSpatialField(unittest.TestCase):
    def test_north_up_and_anchored(self):
        grid = np.arange(12, dtype=float).reshape(3, 4)
        field = to_spatial_field(grid, 200.0, 150.0, TOWER, CRS)
        # first model row is the southern edge
        np.testing.assert_array_equal(field.values[-1], grid[0])
        self.assertEqual(field.transform.c, TOWER[0] - 200.0)
        self.assertEqual(field.transform.f, TOWER[1] + 150.0)
        self.assertEqual(field.transform.a, 100.0)
        self.assertEqual(field.transform.e, -100.0)
        self.assertEqual(
            field.bounds,
            (TOWER[0] - 200.0, TOWER[1] - 150.0, TOWER[0] + 200.0, TOWER[1] + 150.0),
        )
        self.assertEqual(field.crs.to_epsg(), 32612)

    def test_values_not_resampled(self):
        grid = calibrate(np.random.default_rng(0).uniform(size=(8, 8)))
        field = to_spatial_field(grid, 40.0, 40.0, TOWER, CRS)
        self.assertAlmostEqual(field.values.sum(), 1.0)
        self.assertEqual(field.shape, (8, 8))

    def test_cell_centers(self):
        field = to_spatial_field(np.ones((2, 2)), 10.0, 10.0, (0.0, 0.0), CRS)
        xs, ys = field.cell_centers()
        np.testing.assert_allclose(xs, [[-5.0, 5.0], [-5.0, 5.0]])
        np.testing.assert_allclose(ys, [[5.0, 5.0], [-5.0, -5.0]])


class TestContour(unittest.TestCase):
    def test_closed_and_translated(self):
        contour = extract_contour([-10, 10, 10, -10], [-10, -10, 10, 10], TOWER, CRS)
        line = contour.iloc[0]
        self.assertEqual(line.coords[0], line.coords[-1])
        self.assertEqual(len(line.coords), 5)
        self.assertEqual(line.coords[0], (TOWER[0] - 10, TOWER[1] - 10))
        self.assertEqual(contour.crs.to_epsg(), 32612)

    def test_already_closed_not_duplicated(self):
        contour = extract_contour([0, 5, 5, 0], [0, 0, 5, 0], (0.0, 0.0), CRS)
        self.assertEqual(len(contour.iloc[0].coords), 4)

    def test_invalid_contours(self):
        cases = [
            (None, None),
            ([0, 1, 1], None),
            ([0, 1, 1], [0, 0]),
            ([], []),
            ([0, np.nan, 1], [0, 1, 1]),
            ([0, 1, 0, 1], [0, 1, 0, 1]),
        ]
        for xs, ys in cases:
            with self.subTest(xs=xs, ys=ys):
                with self.assertRaises(InvalidContour):
                    extract_contour(xs, ys, TOWER, CRS)

    def test_contour_in_field(self):
        field = to_spatial_field(np.ones((10, 10)), 50.0, 50.0, TOWER, CRS)
        inside = extract_contour([-50, 50, 50, -50], [-50, -50, 50, 50], TOWER, CRS)
        check_contour_in_field(inside, field)

        outside = extract_contour([-60, 20, 20], [0, 0, 20], TOWER, CRS)
        with self.assertRaises(InvalidContour):
            check_contour_in_field(outside, field)


if __name__ == '__main__':
    unittest.main()
