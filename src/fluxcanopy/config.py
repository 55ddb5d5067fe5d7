"""
Configuration containers for footprint and canopy-overlay processing.

All physical constants and processing parameters live here as immutable
dataclasses and are passed explicitly into each component. A complete
configuration can be read from YAML with :meth:`PipelineConfig.from_yaml`::

    site:
      tower_lat: 40.1234
      tower_lon: -111.5678
      working_crs: EPSG:32612
      measurement_height: 30.0
      canopy_height: 18.0
    roughness:
      z0_max: 3.0
    footprint:
      domain_half_width_x: 500.0
      contour_level: 80
    start_date: 2022-05-01
    end_date: 2022-09-30
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional, Tuple, Union

from fluxcanopy.utils import load_yaml

K_VON_KARMAN = 0.4          # von Kármán constant
HECTARE_M2 = 10_000.0


@dataclass(frozen=True)
class SiteConfig:
    """Tower location and geometry.

    Parameters
    ----------
    tower_lat, tower_lon : float
        Tower coordinate in ``tower_crs`` (latitude/longitude by default).
    tower_crs : str
        CRS of the tower coordinate.
    working_crs : str
        Projected CRS (metres) shared by the vegetation layers and all
        footprint geometry.
    measurement_height : float
        Sensor height above ground [m].
    canopy_height : float
        Mean canopy height [m].
    displacement_fraction : float
        Zero-plane displacement as a fraction of canopy height.
    ustar_threshold : float
        Site-specific u* threshold [m s-1]; rows below it are removed
        before footprint processing.
    """
    tower_lat: float = 0.0
    tower_lon: float = 0.0
    tower_crs: str = "EPSG:4326"
    working_crs: str = "EPSG:32612"
    measurement_height: float = 30.0
    canopy_height: float = 18.0
    displacement_fraction: float = 0.67
    ustar_threshold: float = 0.2

    @property
    def displacement_height(self) -> float:
        return self.displacement_fraction * self.canopy_height

    @property
    def zm(self) -> float:
        """Measurement height above the displacement height [m]."""
        return self.measurement_height - self.displacement_height


@dataclass(frozen=True)
class RoughnessConfig:
    """Parameters of the per-sector roughness-length estimation.

    Parameters
    ----------
    stability_limit : float
        Upper bound on ``|zm / L|`` for stable/near-neutral conditions.
    ustar_min, ustar_max : float
        Operating range of friction velocity [m s-1].
    z0_min, z0_max : float
        Bounds of the roughness length [m]; ``z0_min`` must be positive.
    z0_initial : float
        Initial guess for the least-squares fit [m].
    n_iterations : int
        Length of the Metropolis chain.
    n_samples : int
        Number of retained (thinned) draws.
    seed : int
        Seed of the sampler's random generator.
    von_karman : float
        von Kármán constant.
    """
    stability_limit: float = 0.1
    ustar_min: float = 0.2
    ustar_max: float = 1.0
    z0_min: float = 1e-4
    z0_max: float = 3.0
    z0_initial: float = 0.5
    n_iterations: int = 5000
    n_samples: int = 500
    seed: int = 42
    von_karman: float = K_VON_KARMAN

    def __post_init__(self):
        if not 0.0 < self.z0_min < self.z0_max:
            raise ValueError("Roughness bounds must satisfy 0 < z0_min < z0_max")
        if not self.z0_min <= self.z0_initial <= self.z0_max:
            raise ValueError("z0_initial must lie within [z0_min, z0_max]")
        if self.n_samples < 1 or self.n_iterations < self.n_samples:
            raise ValueError("n_iterations must be >= n_samples >= 1")

    @property
    def thin(self) -> int:
        """Thinning interval; the last ``n_samples`` thinned states are kept."""
        return self.n_iterations // self.n_samples


@dataclass(frozen=True)
class FootprintConfig:
    """Domain and options passed to the footprint model.

    Parameters
    ----------
    domain_half_width_x, domain_half_width_y : float
        Half extent of the model domain around the tower [m].
    grid_resolution : float
        Grid spacing [m].
    contour_level : int
        Cumulative-probability level of the analysis contour [%].
    crop : bool
        Ask the model to crop its output to the contour extent. Not
        supported: the footprint raster is georeferenced from the full
        configured domain, so this must stay False.
    roughness_sublayer : bool
        Ask the model to check the roughness-sublayer criterion.
    """
    domain_half_width_x: float = 500.0
    domain_half_width_y: float = 500.0
    grid_resolution: float = 2.0
    contour_level: int = 80
    crop: bool = False
    roughness_sublayer: bool = False

    def __post_init__(self):
        if self.crop:
            raise ValueError(
                "crop=True is not supported; the footprint grid must span the full domain"
            )
        if self.domain_half_width_x <= 0 or self.domain_half_width_y <= 0:
            raise ValueError("Domain half widths must be positive")
        if self.grid_resolution <= 0:
            raise ValueError("grid_resolution must be positive")

    @property
    def domain(self) -> Tuple[float, float, float, float]:
        return (
            -self.domain_half_width_x,
            self.domain_half_width_x,
            -self.domain_half_width_y,
            self.domain_half_width_y,
        )


@dataclass(frozen=True)
class PipelineConfig:
    """
    Complete configuration of a footprint run.

    Attributes
    ----------
    site, roughness, footprint
        Component configurations.
    start_date, end_date : str or None
        Optional inclusive date range applied to the observation table.
    apply_ustar_filter : bool
        Drop rows below ``site.ustar_threshold`` while preparing observations.
    output_format : str
        Output file format ('csv', 'parquet', 'feather').
    max_workers : int
        Number of worker threads for (row, strategy) pairs; 1 runs
        sequentially.
    model : str or None
        ``package.module:function`` path of the footprint model callable.
    """
    site: SiteConfig = field(default_factory=SiteConfig)
    roughness: RoughnessConfig = field(default_factory=RoughnessConfig)
    footprint: FootprintConfig = field(default_factory=FootprintConfig)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    apply_ustar_filter: bool = True
    output_format: str = 'csv'
    max_workers: int = 1
    model: Optional[str] = None

    def __post_init__(self):
        if self.output_format not in ('csv', 'parquet', 'feather'):
            raise ValueError(f"Unknown output format: {self.output_format}")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineConfig":
        data = dict(data or {})
        sections = {
            'site': SiteConfig,
            'roughness': RoughnessConfig,
            'footprint': FootprintConfig,
        }
        kwargs = {}
        for name, section_cls in sections.items():
            values = data.pop(name, None) or {}
            known = {f.name for f in fields(section_cls)}
            unknown = set(values) - known
            if unknown:
                raise KeyError(f"Unknown {name} settings: {sorted(unknown)}")
            kwargs[name] = section_cls(**values)

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise KeyError(f"Unknown pipeline settings: {sorted(unknown)}")
        for key in ('start_date', 'end_date'):
            if data.get(key) is not None:
                data[key] = str(data[key])
        kwargs.update(data)
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "PipelineConfig":
        """Read a configuration from a YAML file."""
        return cls.from_dict(load_yaml(path))


__all__ = [
    "K_VON_KARMAN",
    "HECTARE_M2",
    "SiteConfig",
    "RoughnessConfig",
    "FootprintConfig",
    "PipelineConfig",
]
