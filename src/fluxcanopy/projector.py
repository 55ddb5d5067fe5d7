"""
Projection of footprint model output into real-world coordinates.

The model works on a grid centred on the tower at the origin. This module
normalizes that grid into a probability field, places it on a north-up
raster anchored at the tower position, and turns the model's contour
coordinates into a tower-anchored line geometry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import geopandas as gpd
import numpy as np
from affine import Affine
from rasterio.crs import CRS
from rasterio.transform import from_bounds
from shapely.geometry import LineString

from fluxcanopy.exceptions import DegenerateFootprint, InvalidContour


@dataclass
class SpatialField:
    """Normalized footprint raster in a real-world CRS.

    ``values[0, 0]`` is the north-west cell; ``transform`` maps
    (col, row) to (x, y) of the cell's upper-left corner.
    """
    values: np.ndarray
    transform: Affine
    crs: CRS

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north)"""
        rows, cols = self.values.shape
        west, north = self.transform * (0, 0)
        east, south = self.transform * (cols, rows)
        return (min(west, east), min(south, north), max(west, east), max(south, north))

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """x and y coordinates of all cell centres, shaped like ``values``."""
        rows, cols = np.indices(self.values.shape)
        xs, ys = self.transform * (cols + 0.5, rows + 0.5)
        return np.asarray(xs), np.asarray(ys)


def calibrate(grid: np.ndarray) -> np.ndarray:
    """
    Turn a raw footprint density grid into cell probabilities.

    Negative values (numerical artefacts of the model) are clamped to zero
    and every cell is divided by the grid total.

    Raises
    ------
    DegenerateFootprint
        If the total is zero or not finite.
    """
    grid = np.clip(np.asarray(grid, dtype=float), 0.0, None)
    total = grid.sum()
    if not np.isfinite(total) or total <= 0.0:
        raise DegenerateFootprint(f"Footprint grid total is {total}")
    return grid / total


def to_spatial_field(
    grid: np.ndarray,
    half_width_x: float,
    half_width_y: float,
    tower: Tuple[float, float],
    crs,
) -> SpatialField:
    """
    Place a normalized grid on a tower-anchored, north-up raster.

    The grid spans ``[-half_width_x, half_width_x] x [-half_width_y,
    half_width_y]`` with its first row at the southern edge; rows are
    flipped so the first raster row is the northern one. The tower offset
    only shifts the transform, the values are not resampled.
    """
    values = np.flipud(np.asarray(grid, dtype=float))
    rows, cols = values.shape
    local = from_bounds(-half_width_x, -half_width_y, half_width_x, half_width_y,
                        width=cols, height=rows)
    transform = Affine.translation(tower[0], tower[1]) * local
    return SpatialField(values=values, transform=transform, crs=CRS.from_user_input(crs))


def extract_contour(
    xs,
    ys,
    tower: Tuple[float, float],
    crs,
) -> gpd.GeoSeries:
    """
    Build the tower-anchored contour line from model coordinates.

    Parameters
    ----------
    xs, ys : array-like or None
        Ordered contour coordinates relative to the tower.
    tower : tuple of float
        Tower (x, y) in ``crs``.
    crs
        Working CRS.

    Returns
    -------
    gpd.GeoSeries
        Single closed LineString.

    Raises
    ------
    InvalidContour
        If coordinates are missing, non-finite, mismatched, or have fewer
        than three distinct points.
    """
    if xs is None or ys is None:
        raise InvalidContour("Model returned no contour for the requested level")
    xs = np.asarray(xs, dtype=float).ravel()
    ys = np.asarray(ys, dtype=float).ravel()
    if xs.shape != ys.shape:
        raise InvalidContour(f"Contour x/y lengths differ: {xs.size} vs {ys.size}")
    if xs.size == 0 or not (np.all(np.isfinite(xs)) and np.all(np.isfinite(ys))):
        raise InvalidContour("Contour coordinates are empty or not finite")

    coords = np.column_stack([xs + tower[0], ys + tower[1]])
    if len(np.unique(coords, axis=0)) < 3:
        raise InvalidContour("Contour has fewer than three distinct points")
    if not np.array_equal(coords[0], coords[-1]):
        coords = np.vstack([coords, coords[:1]])

    return gpd.GeoSeries([LineString(coords)], crs=crs)


def check_contour_in_field(contour: gpd.GeoSeries, field: SpatialField) -> None:
    """
    Raise InvalidContour if the contour leaves the model domain.

    A contour reaching past the raster means the requested probability mass
    is not contained in the domain.
    """
    cminx, cminy, cmaxx, cmaxy = contour.total_bounds
    west, south, east, north = field.bounds
    tol = 1e-6 * max(east - west, north - south)
    if cminx < west - tol or cmaxx > east + tol or cminy < south - tol or cmaxy > north + tol:
        raise InvalidContour(
            f"Contour extent {(cminx, cminy, cmaxx, cmaxy)} exceeds the footprint "
            f"domain {(west, south, east, north)}"
        )


__all__ = [
    "SpatialField",
    "calibrate",
    "to_spatial_field",
    "extract_contour",
    "check_contour_in_field",
]
