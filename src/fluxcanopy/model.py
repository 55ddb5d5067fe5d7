"""
Call interface of the external footprint model.

The physical footprint model is treated as a pure function. It is called
with keyword arguments in the convention of the Kljun et al. (2015) FFP
implementation::

    model(zm=..., z0=..., umean=..., h=..., ol=..., sigmav=..., ustar=...,
          wind_dir=..., domain=[xmin, xmax, ymin, ymax], dx=..., dy=...,
          nx=None, ny=None, rs=[80], crop=False, rslayer=False)

and must return a mapping with at least

``f_2d``
    2-D footprint density grid (rows along y, ascending).
``xr``, ``yr``
    One coordinate array per requested contour level, or ``None`` for a
    level the model could not trace.

An optional truthy ``flag_err`` marks the output as unusable.

References:
    Kljun, N., Calanca, P., Rotach, M.W., Schmid, H.P. (2015). A simple
        two-dimensional parameterisation for Flux Footprint Prediction (FFP).
        Geoscientific Model Development, 8, 3695–3713.
"""

from __future__ import annotations

import importlib
from dataclasses import asdict, dataclass
from typing import Any, Callable, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from fluxcanopy.config import FootprintConfig
from fluxcanopy.exceptions import ModelInvocationFailure

FootprintModel = Callable[..., Mapping[str, Any]]


@dataclass(frozen=True)
class FootprintRequest:
    """Meteorological inputs and model options for one model call.

    ``z0`` is None when the model should estimate roughness itself from the
    mean wind speed.
    """
    zm: float
    z0: Optional[float]
    umean: float
    h: float
    ol: float
    sigmav: float
    ustar: float
    wind_dir: float
    domain: Tuple[float, float, float, float]
    dx: float
    dy: float
    contour_level: int = 80
    crop: bool = False
    rslayer: bool = False

    def to_kwargs(self) -> dict:
        kwargs = asdict(self)
        level = kwargs.pop('contour_level')
        kwargs['domain'] = list(self.domain)
        kwargs['rs'] = [level]
        kwargs['nx'] = None
        kwargs['ny'] = None
        return kwargs


@dataclass
class FootprintOutput:
    """Validated model output for a single contour level."""
    grid: np.ndarray
    contour_x: np.ndarray
    contour_y: np.ndarray


def build_request(
    row: pd.Series,
    z0: Optional[float],
    config: FootprintConfig,
) -> FootprintRequest:
    """Assemble the model request for one observation row."""
    return FootprintRequest(
        zm=float(row['ZM']),
        z0=None if z0 is None else float(z0),
        umean=float(row['WS']),
        h=float(row['PBLH']),
        ol=float(row['MO_LENGTH']),
        sigmav=float(row['V_SIGMA']),
        ustar=float(row['USTAR']),
        wind_dir=float(row['WD']),
        domain=config.domain,
        dx=config.grid_resolution,
        dy=config.grid_resolution,
        contour_level=config.contour_level,
        crop=config.crop,
        rslayer=config.roughness_sublayer,
    )


def _first_level(value: Any) -> Any:
    # one entry per requested level, or the bare coordinate array
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        first = value[0]
        if first is None or np.ndim(first) >= 1:
            return first
        return value
    arr = np.asarray(value)
    return arr[0] if arr.ndim == 2 else arr


def parse_output(raw: Mapping[str, Any]) -> FootprintOutput:
    """
    Validate and unpack a raw model result.

    Contour arrays are passed through unchecked (``None`` allowed);
    contour validity is judged when the contour is extracted.

    Raises
    ------
    ModelInvocationFailure
        If the result is not a mapping, is flagged as erroneous, or has no
        usable 2-D density grid.
    """
    if not isinstance(raw, Mapping):
        raise ModelInvocationFailure(
            f"Model returned {type(raw).__name__}, expected a mapping"
        )
    if raw.get('flag_err'):
        raise ModelInvocationFailure("Model flagged its output as erroneous")
    if 'f_2d' not in raw:
        raise ModelInvocationFailure("Model output has no 'f_2d' grid")

    try:
        grid = np.asarray(raw['f_2d'], dtype=float)
    except (TypeError, ValueError) as e:
        raise ModelInvocationFailure(f"Density grid is not numeric: {e}") from e
    if grid.ndim != 2 or grid.size == 0:
        raise ModelInvocationFailure(f"Density grid has shape {grid.shape}, expected 2-D")

    xr = _first_level(raw.get('xr'))
    yr = _first_level(raw.get('yr'))
    return FootprintOutput(
        grid=grid,
        contour_x=None if xr is None else np.asarray(xr, dtype=float),
        contour_y=None if yr is None else np.asarray(yr, dtype=float),
    )


def call_model(model: FootprintModel, request: FootprintRequest) -> FootprintOutput:
    """
    Invoke the footprint model and validate its result.

    Raises
    ------
    ModelInvocationFailure
        If the model raises or returns unusable output.
    """
    try:
        raw = model(**request.to_kwargs())
    except Exception as e:
        raise ModelInvocationFailure(f"{type(e).__name__}: {e}") from e
    return parse_output(raw)


def load_model(path: str) -> FootprintModel:
    """
    Import a model callable from a ``package.module:function`` path.

    Raises
    ------
    ValueError
        If the path is malformed or the attribute is not callable.
    ImportError
        If the module cannot be imported.
    """
    module_name, sep, attr = path.partition(':')
    if not sep or not module_name or not attr:
        raise ValueError(f"Model path must look like 'package.module:function', got {path!r}")
    module = importlib.import_module(module_name)
    try:
        model = getattr(module, attr)
    except AttributeError as e:
        raise ValueError(f"{module_name} has no attribute {attr!r}") from e
    if not callable(model):
        raise ValueError(f"{path} is not callable")
    return model


__all__ = [
    "FootprintModel",
    "FootprintRequest",
    "FootprintOutput",
    "build_request",
    "parse_output",
    "call_model",
    "load_model",
]
