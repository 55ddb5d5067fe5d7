import unittest
import geopandas as gpd
from shapely.geometry import LineString, Point, box
from fluxcanopy.exceptions import OverlayUndefined
from fluxcanopy.overlay import OverlayCalculator, contour_polygon

CRS = "EPSG:32612"


def square_contour(x0=0.0, y0=0.0, size=100.0, crs=CRS):
    line = LineString([(x0, y0), (x0 + size, y0), (x0 + size, y0 + size),
                       (x0, y0 + size), (x0, y0)])
    return gpd.GeoSeries([line], crs=crs)


def points(coords, crs=CRS):
    return gpd.GeoDataFrame(geometry=[Point(x, y) for x, y in coords], crs=crs)


def polygons(geoms, crs=CRS):
    return gpd.GeoDataFrame(geometry=list(geoms), crs=crs)


class TestOverlay(unittest.TestCase):
    def test_tree_density(self):
        trees = points([(10, 10), (20, 50), (50, 50), (70, 30), (90, 90), (150, 50), (-5, 5)])
        calc = OverlayCalculator(trees, polygons([]))
        result = calc.overlay(square_contour())
        self.assertEqual(result.area, 10000.0)
        self.assertEqual(result.tree_count, 5)
        self.assertEqual(result.tree_density, 5.0)
        self.assertEqual(result.canopy_area, 0.0)
        self.assertEqual(result.canopy_fraction, 0.0)

    def test_boundary_points_count(self):
        trees = points([(0, 50), (100, 100), (50, 50)])
        result = OverlayCalculator(trees, polygons([])).overlay(square_contour())
        self.assertEqual(result.tree_count, 3)

    def test_empty_vegetation(self):
        trees = points([(500, 500)])
        canopy = polygons([box(300, 300, 400, 400)])
        result = OverlayCalculator(trees, canopy).overlay(square_contour())
        self.assertEqual(result.tree_count, 0)
        self.assertEqual(result.tree_density, 0.0)
        self.assertEqual(result.canopy_area, 0.0)
        self.assertEqual(result.canopy_fraction, 0.0)

    def test_canopy_fraction(self):
        canopy = polygons([box(-50, -50, 50, 200)])
        result = OverlayCalculator(points([]), canopy).overlay(square_contour())
        self.assertAlmostEqual(result.canopy_area, 5000.0)
        self.assertAlmostEqual(result.canopy_fraction, 0.5)

    def test_overlapping_canopy_dissolved(self):
        canopy = polygons([box(0, 0, 80, 100), box(20, 0, 100, 100)])
        result = OverlayCalculator(points([]), canopy).overlay(square_contour())
        self.assertAlmostEqual(result.canopy_area, 10000.0)
        self.assertLessEqual(result.canopy_fraction, 1.0 + 1e-12)

    def test_contour_reprojected(self):
        contour = square_contour(500000.0, 4400000.0).to_crs("EPSG:4326")
        trees = points([(500050.0, 4400050.0)])
        result = OverlayCalculator(trees, polygons([])).overlay(contour)
        self.assertEqual(result.tree_count, 1)
        self.assertAlmostEqual(result.area, 10000.0, delta=1.0)

    def test_zero_area_contour(self):
        line = gpd.GeoSeries([LineString([(0, 0), (50, 0), (100, 0), (0, 0)])], crs=CRS)
        with self.assertRaises(OverlayUndefined):
            OverlayCalculator(points([]), polygons([])).overlay(line)

    def test_to_fields(self):
        result = OverlayCalculator(points([(1, 1)]), polygons([])).overlay(square_contour())
        fields = result.to_fields()
        self.assertEqual(list(fields), ['FP_AREA', 'TREE_COUNT', 'TREE_DENSITY',
                                        'CANOPY_AREA', 'CANOPY_FRACTION'])
        self.assertEqual(fields['TREE_DENSITY'], 1.0)

    def test_invalid_layers(self):
        with self.assertRaises(ValueError):
            OverlayCalculator(points([], crs="EPSG:4326"), polygons([], crs="EPSG:4326"))
        with self.assertRaises(ValueError):
            OverlayCalculator(points([]), polygons([], crs="EPSG:32613"))


class TestContourPolygon(unittest.TestCase):
    def test_self_intersecting_repaired(self):
        bowtie = LineString([(0, 0), (10, 10), (10, 0), (0, 10), (0, 0)])
        polygon = contour_polygon(bowtie)
        self.assertTrue(polygon.is_valid)
        self.assertGreater(polygon.area, 0.0)

    def test_too_few_vertices(self):
        with self.assertRaises(OverlayUndefined):
            contour_polygon(LineString([(0, 0), (1, 1)]))


if __name__ == '__main__':
    unittest.main()
