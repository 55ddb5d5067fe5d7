"""
Failure taxonomy for footprint and overlay processing.

Every per-timestep failure carries a short ``reason`` code that ends up in
the failure report, so a run can be audited without parsing messages.
"""


class FootprintPipelineError(Exception):
    """Base class for recoverable, per-unit processing failures."""

    reason = "error"


class SectorUnavailable(FootprintPipelineError):
    """No roughness length is available for a wind-direction sector."""

    reason = "sector_unavailable"


class FitFailure(FootprintPipelineError):
    """Least-squares or sampler step failed for a sector."""

    reason = "fit_failure"


class ModelInvocationFailure(FootprintPipelineError):
    """The footprint model raised or returned unusable output."""

    reason = "model_failure"


class DegenerateFootprint(FootprintPipelineError):
    """Footprint grid cannot be normalized (zero or non-finite total)."""

    reason = "degenerate_footprint"


class InvalidContour(FootprintPipelineError):
    """No usable contour line for the requested probability level."""

    reason = "invalid_contour"


class OverlayUndefined(FootprintPipelineError):
    """Overlay statistics are undefined, e.g. for a zero-area contour."""

    reason = "overlay_undefined"


__all__ = [
    "FootprintPipelineError",
    "SectorUnavailable",
    "FitFailure",
    "ModelInvocationFailure",
    "DegenerateFootprint",
    "InvalidContour",
    "OverlayUndefined",
]
