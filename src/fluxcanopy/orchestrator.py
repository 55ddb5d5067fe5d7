"""
Per-timestep footprint processing.

Every observation row is processed once per roughness strategy. A (row,
strategy) pair is an independent unit of work: it either resolves to an
:class:`~fluxcanopy.overlay.OverlayResult` or fails with a typed reason,
and a failure never affects any other pair. Results are merged into a copy
of the observation table under strategy-qualified column names, e.g.
``TREE_DENSITY_SELF`` and ``TREE_DENSITY_SECTOR``.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from fluxcanopy.config import FootprintConfig
from fluxcanopy.exceptions import FootprintPipelineError
from fluxcanopy.model import FootprintModel, build_request, call_model
from fluxcanopy.observations import TIMESTAMP_COL
from fluxcanopy.overlay import OVERLAY_FIELDS, OverlayCalculator, OverlayResult
from fluxcanopy.projector import (
    calibrate,
    check_contour_in_field,
    extract_contour,
    to_spatial_field,
)
from fluxcanopy.roughness import RoughnessTable
from fluxcanopy.utils import logger_check


class Strategy(str, Enum):
    """Roughness-length strategy; the value is the output column suffix."""
    SELF = 'SELF'       # model estimates z0 from the mean wind speed
    SECTOR = 'SECTOR'   # z0 from the per-sector roughness table


@dataclass(frozen=True)
class PairResult:
    """Outcome of one (row, strategy) pair."""
    row: int
    strategy: Strategy
    result: Optional[OverlayResult] = None
    z0: Optional[float] = None
    reason: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def output_columns(strategies: Iterable[Strategy] = tuple(Strategy)) -> List[str]:
    """Names of the result columns for the given strategies."""
    return [f"{name}_{s.value}" for s in strategies for name in OVERLAY_FIELDS]


class TimestepOrchestrator:
    """
    Drive the footprint model, projection and overlay for every row.

    Parameters
    ----------
    model : callable
        Footprint model (see :mod:`fluxcanopy.model`).
    overlay : OverlayCalculator
        Calculator holding the vegetation layers.
    roughness : RoughnessTable
        Per-sector roughness lengths for :attr:`Strategy.SECTOR`.
    tower : tuple of float
        Tower (x, y) in ``crs``.
    crs
        Working CRS.
    config : FootprintConfig, optional
        Domain and model options.
    strategies : sequence of Strategy, optional
        Strategies to run. Defaults to both.
    max_workers : int, optional
        Threads used for pairs; 1 (default) processes sequentially.
    logger : logging.Logger, optional
        Logger instance.
    """

    def __init__(
        self,
        model: FootprintModel,
        overlay: OverlayCalculator,
        roughness: RoughnessTable,
        tower: Tuple[float, float],
        crs,
        config: Optional[FootprintConfig] = None,
        strategies: Sequence[Strategy] = (Strategy.SELF, Strategy.SECTOR),
        max_workers: int = 1,
        logger: Optional[logging.Logger] = None,
    ):
        self.model = model
        self.overlay = overlay
        self.roughness = roughness
        self.tower = (float(tower[0]), float(tower[1]))
        self.crs = crs
        self.config = config or FootprintConfig()
        self.strategies = tuple(Strategy(s) for s in strategies)
        self.max_workers = max_workers
        self.logger = logger_check(logger)

    def resolve_roughness(self, row: pd.Series, strategy: Strategy) -> Optional[float]:
        """Roughness length for a pair; None lets the model estimate it."""
        if strategy is Strategy.SELF:
            return None
        return self.roughness.lookup(row['SECTOR'])

    def footprint_statistics(self, row: pd.Series, z0: Optional[float]) -> OverlayResult:
        """Model call, projection, contour extraction and overlay for one row."""
        cfg = self.config
        output = call_model(self.model, build_request(row, z0, cfg))
        field = to_spatial_field(
            calibrate(output.grid),
            cfg.domain_half_width_x,
            cfg.domain_half_width_y,
            self.tower,
            self.crs,
        )
        contour = extract_contour(output.contour_x, output.contour_y, self.tower, self.crs)
        check_contour_in_field(contour, field)
        return self.overlay.overlay(contour)

    def process_pair(self, index, row: pd.Series, strategy: Strategy) -> PairResult:
        """Process one (row, strategy) pair; failures become failed results."""
        z0 = None
        try:
            z0 = self.resolve_roughness(row, strategy)
            stats = self.footprint_statistics(row, z0)
        except FootprintPipelineError as e:
            self.logger.warning(f"Row {index} [{strategy.value}]: {e.reason}: {e}")
            return PairResult(index, strategy, z0=z0, reason=e.reason, message=str(e))
        except Exception as e:
            self.logger.error(
                f"Row {index} [{strategy.value}]: unexpected error: {e}", exc_info=True
            )
            return PairResult(index, strategy, z0=z0, reason='unexpected', message=str(e))

        self.logger.debug(
            f"Row {index} [{strategy.value}]: area={stats.area:,.0f} m2, "
            f"trees={stats.tree_count}, canopy={stats.canopy_fraction:.3f}"
        )
        return PairResult(index, strategy, result=stats, z0=z0)

    def run(self, observations: pd.DataFrame) -> List[PairResult]:
        """
        Process every (row, strategy) pair.

        Rows are visited in table order; with ``max_workers > 1`` pairs are
        processed concurrently and the returned list keeps the same order.
        """
        tasks = [
            (index, row, strategy)
            for index, row in observations.iterrows()
            for strategy in self.strategies
        ]
        n_rows = len(observations)
        self.logger.info(
            f"Processing {n_rows:,} rows x {len(self.strategies)} strategies"
        )

        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(lambda t: self.process_pair(*t), tasks))
        else:
            results = []
            for i, task in enumerate(tasks, 1):
                results.append(self.process_pair(*task))
                if i % (100 * len(self.strategies)) == 0:
                    self.logger.info(f"  {i // len(self.strategies):,}/{n_rows:,} rows done")

        n_ok = sum(r.ok for r in results)
        self.logger.info(f"Pairs resolved: {n_ok:,}/{len(results):,}")
        return results

    def merge(self, observations: pd.DataFrame, results: Iterable[PairResult]) -> pd.DataFrame:
        """Copy of ``observations`` with result columns filled by row index."""
        out = observations.copy()
        for col in output_columns(self.strategies):
            out[col] = np.nan
        for r in results:
            if not r.ok:
                continue
            for name, value in r.result.to_fields().items():
                out.at[r.row, f"{name}_{r.strategy.value}"] = value
        return out

    def process(self, observations: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Run all pairs and merge them.

        Returns
        -------
        tuple of pd.DataFrame
            The augmented observation table and the failure report.
        """
        results = self.run(observations)
        return self.merge(observations, results), failure_report(observations, results)


def failure_report(observations: pd.DataFrame, results: Iterable[PairResult]) -> pd.DataFrame:
    """One row per failed pair: row, timestamp, strategy, reason, message."""
    records = []
    for r in results:
        if r.ok:
            continue
        records.append({
            'row': r.row,
            TIMESTAMP_COL: observations.at[r.row, TIMESTAMP_COL]
            if TIMESTAMP_COL in observations.columns else pd.NaT,
            'strategy': r.strategy.value,
            'z0': r.z0,
            'reason': r.reason,
            'message': r.message,
        })
    return pd.DataFrame(
        records,
        columns=['row', TIMESTAMP_COL, 'strategy', 'z0', 'reason', 'message'],
    )


__all__ = [
    "Strategy",
    "PairResult",
    "output_columns",
    "TimestepOrchestrator",
    "failure_report",
]
