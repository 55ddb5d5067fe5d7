"""
roughness.py
============
Per-sector roughness-length (z0) estimation from the logarithmic wind
profile.

Under stable to near-neutral stratification the mean wind speed follows

    u = u* / k * ln(zm / z0)

For every wind-direction sector the stable subset of observations is fitted
by bounded nonlinear least squares. The estimate seeds a Metropolis sampler
over the same bounded interval, with the fit's residual variance as the
proposal variance; the best-scoring value visited by the chain becomes the
sector's roughness length.

A sector without stable observations, or whose fit fails numerically, is
reported as unavailable (``None``) and never aborts the estimation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Callable, Dict, Iterable, Iterator, Optional

import numpy as np
import pandas as pd
from scipy.optimize import curve_fit

from fluxcanopy.config import RoughnessConfig
from fluxcanopy.exceptions import FitFailure, SectorUnavailable
from fluxcanopy.sectors import SECTOR_LABELS
from fluxcanopy.utils import logger_check

_MIN_RESIDUAL_STD = 1e-6


def log_wind_profile(X: np.ndarray, z0: float, k: float = 0.4) -> np.ndarray:
    """Wind speed from friction velocity and height for a roughness length.

    ``X`` stacks friction velocity (row 0) and measurement height above the
    displacement height (row 1).
    """
    ustar, zm = X
    return ustar / k * np.log(zm / z0)


def stable_subset(observations: pd.DataFrame, config: RoughnessConfig) -> pd.DataFrame:
    """
    Select stable/near-neutral rows suitable for the log-profile fit.

    Keeps rows with ``|ZM / MO_LENGTH| < stability_limit``, friction velocity
    within ``[ustar_min, ustar_max]``, a defined sector and finite wind speed.
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        zeta = observations['ZM'] / observations['MO_LENGTH']
    mask = (
        (zeta.abs() < config.stability_limit)
        & observations['USTAR'].between(config.ustar_min, config.ustar_max)
        & observations['SECTOR'].notna()
        & np.isfinite(observations['WS'])
        & (observations['ZM'] > 0)
    )
    return observations.loc[mask]


# ---------------------------------------------------------------------------
# Metropolis sampler
# ---------------------------------------------------------------------------

@dataclass
class ChainResult:
    """Outcome of a Metropolis run."""
    samples: np.ndarray
    best: float
    best_log_likelihood: float
    acceptance_rate: float


def metropolis(
    log_likelihood: Callable[[float], float],
    x0: float,
    step: float,
    lower: float,
    upper: float,
    n_iterations: int,
    n_samples: int,
    rng: np.random.Generator,
) -> ChainResult:
    """
    Random-walk Metropolis sampler for one bounded parameter.

    Proposals are Gaussian with standard deviation ``step``; proposals
    outside ``[lower, upper]`` are rejected (flat prior on the interval).
    Every ``n_iterations // n_samples``-th state is recorded and the last
    ``n_samples`` recorded states are returned.

    Raises
    ------
    FitFailure
        If the starting point has a non-finite log-likelihood, the step
        is not a positive finite number, or fewer iterations than samples
        are requested.
    """
    if n_samples < 1 or n_iterations < n_samples:
        raise FitFailure(f"Cannot draw {n_samples} samples from {n_iterations} iterations")
    thin = n_iterations // n_samples
    if not np.isfinite(step) or step <= 0:
        raise FitFailure(f"Invalid proposal step: {step}")
    current = float(x0)
    current_ll = log_likelihood(current)
    if not np.isfinite(current_ll):
        raise FitFailure(f"Non-finite log-likelihood at start value {current}")

    best, best_ll = current, current_ll
    samples = []
    accepted = 0
    for i in range(n_iterations):
        proposal = current + step * rng.standard_normal()
        if lower <= proposal <= upper:
            ll = log_likelihood(proposal)
            if np.isfinite(ll) and np.log(rng.uniform()) < ll - current_ll:
                current, current_ll = proposal, ll
                accepted += 1
                if ll > best_ll:
                    best, best_ll = proposal, ll
        if (i + 1) % thin == 0:
            samples.append(current)

    return ChainResult(
        samples=np.asarray(samples[-n_samples:]),
        best=best,
        best_log_likelihood=best_ll,
        acceptance_rate=accepted / n_iterations,
    )


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------

@dataclass
class SectorFit:
    """Diagnostics of the roughness estimate for one sector."""
    sector: str
    n_obs: int = 0
    z0: Optional[float] = None
    z0_lsq: float = np.nan
    z0_lsq_variance: float = np.nan
    proposal_variance: float = np.nan
    residual_std: float = np.nan
    acceptance_rate: float = np.nan
    posterior_mean: float = np.nan
    posterior_std: float = np.nan
    n_draws: int = 0
    reason: Optional[str] = None
    samples: np.ndarray = field(default_factory=lambda: np.empty(0), repr=False)

    @property
    def available(self) -> bool:
        return self.z0 is not None


class RoughnessTable(Mapping):
    """
    Read-only mapping from sector label to roughness length.

    Values are floats, or ``None`` for sectors without an estimate.
    """

    def __init__(self, fits: Mapping[str, SectorFit]):
        self._fits: Dict[str, SectorFit] = dict(fits)

    def __getitem__(self, sector: str) -> Optional[float]:
        return self._fits[sector].z0

    def __iter__(self) -> Iterator[str]:
        return iter(self._fits)

    def __len__(self) -> int:
        return len(self._fits)

    def __repr__(self) -> str:
        values = {k: (None if v is None else round(v, 4)) for k, v in self.items()}
        return f"RoughnessTable({values})"

    def fit(self, sector: str) -> SectorFit:
        return self._fits[sector]

    def lookup(self, sector) -> float:
        """
        Return the roughness length of ``sector``.

        Raises
        ------
        SectorUnavailable
            If the sector is undefined, unknown, or has no estimate.
        """
        if sector is None or (isinstance(sector, float) and np.isnan(sector)):
            raise SectorUnavailable("Wind-direction sector is undefined")
        fit = self._fits.get(sector)
        if fit is None:
            raise SectorUnavailable(f"Unknown sector: {sector!r}")
        if fit.z0 is None:
            raise SectorUnavailable(
                f"No roughness length for sector {sector} ({fit.reason})"
            )
        return fit.z0

    @property
    def available(self) -> list[str]:
        return [k for k, f in self._fits.items() if f.available]

    def to_frame(self) -> pd.DataFrame:
        """Per-sector diagnostics as a DataFrame (one row per sector)."""
        columns = [f.name for f in fields(SectorFit) if f.name != 'samples']
        return pd.DataFrame(
            [{c: getattr(fit, c) for c in columns} for fit in self._fits.values()],
            columns=columns,
        )

    @classmethod
    def from_values(cls, values: Mapping[str, Optional[float]]) -> "RoughnessTable":
        """Build a table from plain values, e.g. a previously saved report."""
        return cls({
            k: SectorFit(sector=k, z0=None if v is None else float(v),
                         reason=None if v is not None else SectorUnavailable.reason)
            for k, v in values.items()
        })


# ---------------------------------------------------------------------------
# Estimator
# ---------------------------------------------------------------------------

class RoughnessEstimator:
    """
    Estimate one roughness length per wind-direction sector.

    Parameters
    ----------
    config : RoughnessConfig, optional
        Estimation parameters.
    logger : logging.Logger, optional
        Logger instance.
    """

    def __init__(
        self,
        config: Optional[RoughnessConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or RoughnessConfig()
        self.logger = logger_check(logger)

    def estimate(
        self,
        observations: pd.DataFrame,
        sectors: Iterable[str] = SECTOR_LABELS,
    ) -> RoughnessTable:
        """
        Build the roughness table.

        Parameters
        ----------
        observations : pd.DataFrame
            Table with ``WS``, ``USTAR``, ``MO_LENGTH``, ``ZM`` and ``SECTOR``.
        sectors : iterable of str, optional
            Sector labels to estimate. Defaults to all twelve.

        Returns
        -------
        RoughnessTable
        """
        stable = stable_subset(observations, self.config)
        self.logger.info(
            f"Roughness estimation: {len(stable):,} of {len(observations):,} "
            "rows pass the stability filter"
        )

        fits = {}
        for sector in sectors:
            subset = stable.loc[stable['SECTOR'] == sector]
            fits[sector] = self._estimate_sector(sector, subset)

        table = RoughnessTable(fits)
        self.logger.info(
            f"Roughness available for {len(table.available)}/{len(table)} sectors"
        )
        return table

    def _estimate_sector(self, sector: str, subset: pd.DataFrame) -> SectorFit:
        fit = SectorFit(sector=sector, n_obs=len(subset))
        if subset.empty:
            fit.reason = SectorUnavailable.reason
            self.logger.warning(f"Sector {sector}: no stable observations")
            return fit

        try:
            self._fit_sector(sector, subset, fit)
        except Exception as e:
            fit.z0 = None
            fit.reason = FitFailure.reason
            self.logger.warning(f"Sector {sector}: roughness fit failed: {e}")
            return fit

        self.logger.info(
            f"Sector {sector}: z0 = {fit.z0:.4f} m "
            f"(n={fit.n_obs}, lsq={fit.z0_lsq:.4f}, acc={fit.acceptance_rate:.2f})"
        )
        return fit

    def _fit_sector(self, sector: str, subset: pd.DataFrame, fit: SectorFit) -> None:
        cfg = self.config
        X = np.vstack([
            subset['USTAR'].to_numpy(dtype=float),
            subset['ZM'].to_numpy(dtype=float),
        ])
        ws = subset['WS'].to_numpy(dtype=float)

        def profile(X, z0):
            return log_wind_profile(X, z0, k=cfg.von_karman)

        popt, pcov = curve_fit(
            profile,
            X,
            ws,
            p0=[cfg.z0_initial],
            bounds=([cfg.z0_min], [cfg.z0_max]),
        )
        z0_lsq = float(np.clip(popt[0], cfg.z0_min, cfg.z0_max))

        residuals = ws - profile(X, z0_lsq)
        dof = max(len(ws) - 1, 1)
        residual_std = max(float(np.sqrt(np.sum(residuals ** 2) / dof)), _MIN_RESIDUAL_STD)

        def log_likelihood(z0: float) -> float:
            r = ws - profile(X, z0)
            return -0.5 * float(np.sum((r / residual_std) ** 2))

        rng = np.random.default_rng([cfg.seed, SECTOR_LABELS.index(sector)]
                                    if sector in SECTOR_LABELS else cfg.seed)
        chain = metropolis(
            log_likelihood,
            x0=z0_lsq,
            step=residual_std,
            lower=cfg.z0_min,
            upper=cfg.z0_max,
            n_iterations=cfg.n_iterations,
            n_samples=cfg.n_samples,
            rng=rng,
        )

        fit.z0_lsq = z0_lsq
        # parameter variance of the fit; reported, not used by the sampler
        fit.z0_lsq_variance = float(pcov[0, 0])
        fit.proposal_variance = residual_std ** 2
        fit.residual_std = residual_std
        fit.acceptance_rate = chain.acceptance_rate
        fit.samples = chain.samples
        fit.n_draws = len(chain.samples)
        fit.posterior_mean = float(np.mean(chain.samples))
        fit.posterior_std = float(np.std(chain.samples))
        fit.z0 = float(chain.best)


def estimate_roughness(
    observations: pd.DataFrame,
    config: Optional[RoughnessConfig] = None,
    sectors: Iterable[str] = SECTOR_LABELS,
    logger: Optional[logging.Logger] = None,
) -> RoughnessTable:
    """Convenience wrapper around :class:`RoughnessEstimator`."""
    return RoughnessEstimator(config, logger=logger).estimate(observations, sectors)


__all__ = [
    "log_wind_profile",
    "stable_subset",
    "metropolis",
    "ChainResult",
    "SectorFit",
    "RoughnessTable",
    "RoughnessEstimator",
    "estimate_roughness",
]
