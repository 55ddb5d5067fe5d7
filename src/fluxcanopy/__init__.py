"""
fluxcanopy: Flux footprints and tree-canopy statistics for eddy-covariance towers.

This package estimates per-sector roughness lengths from half-hourly
eddy-covariance data, computes a two-dimensional flux footprint for every
half-hour with an external footprint model, and overlays the footprint's
probability contour with tree-stem and canopy layers.

The main components of the package are:
- `RoughnessEstimator`: Per-sector roughness length from the log wind profile.
- `projector`: Calibration and projection of footprint model output.
- `OverlayCalculator`: Tree count, tree density and canopy fraction per contour.
- `TimestepOrchestrator`: Per (row, strategy) footprint processing.
- `FootprintPipeline`: Complete run from input files to output tables.
"""
from .config import PipelineConfig, SiteConfig, RoughnessConfig, FootprintConfig
from .roughness import RoughnessEstimator, RoughnessTable
from .overlay import OverlayCalculator, OverlayResult
from .orchestrator import TimestepOrchestrator, Strategy, PairResult
from .pipeline import FootprintPipeline, ProcessingResult
from . import exceptions, model, observations, projector, sectors

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "SiteConfig",
    "RoughnessConfig",
    "FootprintConfig",
    "RoughnessEstimator",
    "RoughnessTable",
    "OverlayCalculator",
    "OverlayResult",
    "TimestepOrchestrator",
    "Strategy",
    "PairResult",
    "FootprintPipeline",
    "ProcessingResult",
    "exceptions",
    "model",
    "observations",
    "projector",
    "sectors",
]
