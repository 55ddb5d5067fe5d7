"""
Wind-direction sectors.

Twelve fixed 30° sectors cover the compass. Bins are half-open
``[lower, upper)`` except the last one, which is closed so that a direction
of exactly 360° still belongs to ``NNW``.
"""

from typing import Optional, Union

import numpy as np
import pandas as pd

SECTOR_WIDTH = 30.0
SECTOR_LABELS = (
    'N', 'NNE', 'ENE', 'E', 'ESE', 'SSE',
    'S', 'SSW', 'WSW', 'W', 'WNW', 'NNW',
)
SECTOR_EDGES = np.arange(0.0, 360.0 + SECTOR_WIDTH, SECTOR_WIDTH)


def assign_sectors(wind_direction: Union[pd.Series, np.ndarray, list]) -> pd.Series:
    """
    Map wind directions to sector labels.

    Parameters
    ----------
    wind_direction : array-like
        Wind direction in degrees, expected within [0, 360].

    Returns
    -------
    pd.Series
        Object series of sector labels. Missing or out-of-range directions
        yield NaN.
    """
    wd = pd.Series(wind_direction, dtype=float)
    sectors = pd.cut(wd, bins=SECTOR_EDGES, right=False, labels=list(SECTOR_LABELS))
    sectors = sectors.astype(object)
    return sectors.where(wd != 360.0, SECTOR_LABELS[-1])


def sector_for(direction: float) -> Optional[str]:
    """Return the sector label of a single direction, or None if undefined."""
    if direction is None or not np.isfinite(direction):
        return None
    if direction < 0.0 or direction > 360.0:
        return None
    if direction == 360.0:
        return SECTOR_LABELS[-1]
    return SECTOR_LABELS[int(direction // SECTOR_WIDTH)]


def sector_bounds(label: str) -> tuple[float, float]:
    """Lower and upper bound (degrees) of a sector."""
    i = SECTOR_LABELS.index(label)
    return float(SECTOR_EDGES[i]), float(SECTOR_EDGES[i + 1])


__all__ = [
    "SECTOR_WIDTH",
    "SECTOR_LABELS",
    "SECTOR_EDGES",
    "assign_sectors",
    "sector_for",
    "sector_bounds",
]
