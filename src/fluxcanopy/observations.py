"""
Loading and preparation of the half-hourly observation table.

The table arrives already cleaned and gap-filtered; this module only checks
the schema and adds the derived columns the footprint core needs
(measurement height above displacement and wind-direction sector).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd

from fluxcanopy.config import SiteConfig
from fluxcanopy.sectors import assign_sectors
from fluxcanopy.utils import logger_check

TIMESTAMP_COL = 'TIMESTAMP'
REQUIRED_COLUMNS = [
    TIMESTAMP_COL,
    'WS',
    'WD',
    'USTAR',
    'MO_LENGTH',
    'V_SIGMA',
    'PBLH',
]
NA_VALUES = ["-9999", "NAN", "NaN", "nan", -9999.0]


def load_observations(
    path: Union[str, Path],
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """
    Read a prepared observation table from CSV.

    Parameters
    ----------
    path : str or Path
        CSV file with at least the columns in ``REQUIRED_COLUMNS``.
    logger : logging.Logger, optional
        Logger instance.

    Returns
    -------
    pd.DataFrame
        Raw table with ``TIMESTAMP`` parsed to datetimes.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    logger = logger_check(logger)
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Observation table not found: {path}")
    logger.debug("Reading %s", path)
    df = pd.read_csv(path, na_values=NA_VALUES)
    validate_schema(df)
    df[TIMESTAMP_COL] = pd.to_datetime(df[TIMESTAMP_COL])
    return df


def validate_schema(df: pd.DataFrame) -> None:
    """Raise KeyError if any required column is absent."""
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise KeyError(f"Observation table is missing columns: {missing}")


def wrap_direction(wd: pd.Series) -> pd.Series:
    """Wrap directions outside [0, 360] back onto the compass."""
    outside = (wd < 0.0) | (wd > 360.0)
    return wd.where(~outside, np.mod(wd, 360.0))


def select_date_range(
    df: pd.DataFrame,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> pd.DataFrame:
    """Keep rows whose timestamp falls in the inclusive range."""
    mask = pd.Series(True, index=df.index)
    if start_date is not None:
        mask &= df[TIMESTAMP_COL] >= pd.Timestamp(start_date)
    if end_date is not None:
        end = pd.Timestamp(end_date)
        # a bare date means the whole day
        if end == end.normalize():
            end = end + pd.Timedelta(days=1) - pd.Timedelta(nanoseconds=1)
        mask &= df[TIMESTAMP_COL] <= end
    return df.loc[mask]


def apply_ustar_threshold(df: pd.DataFrame, threshold: float) -> pd.DataFrame:
    """Drop rows whose friction velocity does not exceed ``threshold``."""
    return df.loc[df['USTAR'] > threshold]


def prepare_observations(
    df: pd.DataFrame,
    site: SiteConfig,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    apply_ustar_filter: bool = True,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """
    Produce the observation table consumed by the footprint core.

    Sorts by timestamp, removes duplicated timestamps, applies the date
    range and the u* threshold, wraps wind direction, and fills ``ZM`` and
    ``SECTOR`` when they are not supplied. Rows with a missing wind
    direction are kept; their sector is NaN.

    Parameters
    ----------
    df : pd.DataFrame
        Table with the required columns.
    site : SiteConfig
        Site geometry, used for ``ZM`` and the u* threshold.
    start_date, end_date : str, optional
        Inclusive date range.
    apply_ustar_filter : bool, optional
        Drop rows at or below ``site.ustar_threshold``. Defaults to True.
    logger : logging.Logger, optional
        Logger instance.

    Returns
    -------
    pd.DataFrame
        Prepared copy with a fresh ``RangeIndex``.
    """
    logger = logger_check(logger)
    validate_schema(df)

    out = df.copy()
    out[TIMESTAMP_COL] = pd.to_datetime(out[TIMESTAMP_COL])
    out = out.sort_values(TIMESTAMP_COL, kind='mergesort')

    n_before = len(out)
    out = out.drop_duplicates(subset=TIMESTAMP_COL, keep='first')
    if len(out) < n_before:
        logger.warning(f"Dropped {n_before - len(out)} duplicated timestamps")

    out = select_date_range(out, start_date, end_date)

    if apply_ustar_filter:
        n_before = len(out)
        out = apply_ustar_threshold(out, site.ustar_threshold)
        logger.info(
            f"u* filter ({site.ustar_threshold} m/s) removed {n_before - len(out)} rows"
        )

    out = out.copy()
    out['WD'] = wrap_direction(out['WD'].astype(float))

    if 'ZM' not in out.columns:
        if site.zm <= 0:
            raise ValueError(
                f"Measurement height {site.measurement_height} m is below the "
                f"displacement height {site.displacement_height:.2f} m"
            )
        out['ZM'] = site.zm

    if 'SECTOR' not in out.columns:
        out['SECTOR'] = assign_sectors(out['WD']).to_numpy()

    out = out.reset_index(drop=True)
    logger.info(f"Prepared {len(out):,} observation rows")
    return out


__all__ = [
    "TIMESTAMP_COL",
    "REQUIRED_COLUMNS",
    "load_observations",
    "validate_schema",
    "wrap_direction",
    "select_date_range",
    "apply_ustar_threshold",
    "prepare_observations",
]
