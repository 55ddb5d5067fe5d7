"""
Overlay of a footprint contour with tree-stem and canopy layers.

Points on the contour line count as inside the footprint: stems are
selected with ``covered_by``, which is boundary-inclusive.

Canopy area is the area of the clipped canopy polygons after dissolving
them with ``unary_union``, so ground covered by overlapping polygons counts
once. For disjoint polygons this equals the plain sum of intersected areas.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Union

import geopandas as gpd
import numpy as np
from shapely.geometry import LineString, Polygon, box
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from fluxcanopy.config import HECTARE_M2
from fluxcanopy.exceptions import OverlayUndefined
from fluxcanopy.utils import logger_check

OVERLAY_FIELDS = (
    'FP_AREA',
    'TREE_COUNT',
    'TREE_DENSITY',
    'CANOPY_AREA',
    'CANOPY_FRACTION',
)


@dataclass(frozen=True)
class OverlayResult:
    """Vegetation statistics of one footprint contour.

    Attributes
    ----------
    area : float
        Contour polygon area [m2].
    tree_count : int
        Number of tree stems inside or on the contour.
    tree_density : float
        Stems per hectare.
    canopy_area : float
        Canopy area inside the contour [m2].
    canopy_fraction : float
        ``canopy_area / area``.
    """
    area: float
    tree_count: int
    tree_density: float
    canopy_area: float
    canopy_fraction: float

    def to_dict(self) -> dict:
        return asdict(self)

    def to_fields(self) -> dict:
        """Values keyed by output column stem."""
        return dict(zip(OVERLAY_FIELDS, (
            self.area,
            self.tree_count,
            self.tree_density,
            self.canopy_area,
            self.canopy_fraction,
        )))


def contour_polygon(contour: Union[gpd.GeoSeries, BaseGeometry]) -> Polygon:
    """Close a contour line into the polygon it encloses."""
    geom = contour.iloc[0] if isinstance(contour, gpd.GeoSeries) else contour
    if isinstance(geom, Polygon):
        polygon = geom
    elif isinstance(geom, LineString):
        if len(geom.coords) < 3:
            raise OverlayUndefined("Contour has fewer than three vertices")
        polygon = Polygon(geom.coords)
    else:
        raise OverlayUndefined(f"Unsupported contour geometry: {geom.geom_type}")
    if not polygon.is_valid:
        # self-intersecting contour rings
        polygon = polygon.buffer(0)
    return polygon


class OverlayCalculator:
    """
    Compute vegetation statistics inside footprint contours.

    Parameters
    ----------
    trees : gpd.GeoDataFrame
        Tree-stem points.
    canopy : gpd.GeoDataFrame
        Canopy-extent polygons.
    logger : logging.Logger, optional
        Logger instance.

    Both layers must share the projected (metric) CRS of the contours.
    """

    def __init__(
        self,
        trees: gpd.GeoDataFrame,
        canopy: gpd.GeoDataFrame,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger_check(logger)
        if trees.crs is not None and canopy.crs is not None and trees.crs != canopy.crs:
            raise ValueError(f"Layer CRS differ: {trees.crs} vs {canopy.crs}")
        crs = trees.crs or canopy.crs
        if crs is not None and not crs.is_projected:
            raise ValueError(f"Overlay requires a projected CRS, got {crs}")
        self.trees = trees
        self.canopy = canopy
        self.crs = crs
        # build spatial indexes up front; worker threads only query them
        for layer in (trees, canopy):
            if not layer.empty:
                layer.sindex

    @staticmethod
    def _candidates(layer: gpd.GeoDataFrame, polygon: Polygon) -> gpd.GeoDataFrame:
        """Features whose bounding box intersects the polygon's bounding box."""
        if layer.empty:
            return layer
        idx = layer.sindex.query(box(*polygon.bounds))
        return layer.iloc[np.sort(idx)]

    def overlay(self, contour: Union[gpd.GeoSeries, BaseGeometry]) -> OverlayResult:
        """
        Overlay one contour with both vegetation layers.

        Raises
        ------
        OverlayUndefined
            If the contour polygon has zero (or non-finite) area.
        """
        if (
            isinstance(contour, gpd.GeoSeries)
            and self.crs is not None
            and contour.crs is not None
            and contour.crs != self.crs
        ):
            contour = contour.to_crs(self.crs)

        polygon = contour_polygon(contour)
        area = float(polygon.area)
        if not np.isfinite(area) or area <= 0.0:
            raise OverlayUndefined(f"Contour polygon area is {area}")

        trees = self._candidates(self.trees, polygon)
        canopy = self._candidates(self.canopy, polygon)

        tree_count = int(trees.geometry.covered_by(polygon).sum()) if len(trees) else 0

        canopy_area = 0.0
        if len(canopy):
            clipped = canopy.geometry.intersection(polygon)
            canopy_area = float(unary_union(list(clipped[~clipped.is_empty])).area)

        result = OverlayResult(
            area=area,
            tree_count=tree_count,
            tree_density=tree_count * HECTARE_M2 / area,
            canopy_area=canopy_area,
            canopy_fraction=canopy_area / area,
        )
        self.logger.debug(f"Overlay: {result}")
        return result


__all__ = [
    "OVERLAY_FIELDS",
    "OverlayResult",
    "contour_polygon",
    "OverlayCalculator",
]
