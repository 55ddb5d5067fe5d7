"""
Complete footprint / canopy-overlay pipeline.

This module provides high-level orchestration for a footprint run: loading
the static inputs, estimating per-sector roughness lengths, computing the
footprint statistics for every half-hour and saving the augmented table
together with its reports.

Classes
-------
FootprintPipeline : Main orchestration class
ProcessingResult : Container for run results and metadata

Functions
---------
run_pipeline : Convenience function to run the complete pipeline

Examples
--------
Basic usage:

    >>> from fluxcanopy.pipeline import FootprintPipeline
    >>> from fluxcanopy.config import PipelineConfig
    >>> from ffp import FFP
    >>>
    >>> pipeline = FootprintPipeline(PipelineConfig.from_yaml('site.yml'), model=FFP)
    >>> result = pipeline.run(
    ...     'data/US-UTW_footprint_input.csv',
    ...     trees='data/tree_stems.gpkg',
    ...     canopy='data/canopy.gpkg',
    ...     output_dir='results/',
    ... )
    >>> print(result.summary())

Command-line usage:

    $ python -m fluxcanopy.pipeline --config site.yml --input data/obs.csv \\
          --trees data/tree_stems.gpkg --canopy data/canopy.gpkg \\
          --model ffp:FFP --output results/
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import geopandas as gpd
import numpy as np
import pandas as pd
from pyproj import CRS, Transformer

from fluxcanopy.config import PipelineConfig
from fluxcanopy.model import FootprintModel, load_model
from fluxcanopy.observations import load_observations, prepare_observations
from fluxcanopy.orchestrator import TimestepOrchestrator, failure_report
from fluxcanopy.overlay import OverlayCalculator
from fluxcanopy.roughness import RoughnessEstimator, RoughnessTable
from fluxcanopy.utils import logger_check


# =============================================================================
# Result Container
# =============================================================================

@dataclass
class ProcessingResult:
    """
    Container for run results and metadata.

    Attributes
    ----------
    success : bool
        Whether the main loop and saving completed.
    input_file : Path or None
        Observation table path, if read from file.
    output_file : Path or None
        Path to the augmented table (if saved).
    n_rows : int
        Number of prepared observation rows.
    n_pairs : int
        Number of (row, strategy) pairs attempted.
    n_resolved : int
        Number of pairs with statistics.
    failure_counts : dict
        Failed pairs per reason code.
    sectors_available : list of str
        Sectors with a roughness estimate.
    processing_time : float
        Processing time in seconds.
    error_message : str or None
        Error message if the run failed.
    reports : dict
        Generated report tables.
    """

    success: bool
    input_file: Optional[Path] = None
    output_file: Optional[Path] = None
    n_rows: int = 0
    n_pairs: int = 0
    n_resolved: int = 0
    failure_counts: Dict[str, int] = field(default_factory=dict)
    sectors_available: list = field(default_factory=list)
    processing_time: float = 0.0
    error_message: Optional[str] = None
    reports: Dict = field(default_factory=dict)
    data: Optional[pd.DataFrame] = field(default=None, repr=False)

    def to_dict(self) -> dict:
        """Convert result to dictionary (tables excluded)."""
        d = {
            f.name: getattr(self, f.name)
            for f in fields(self) if f.name not in ('reports', 'data')
        }
        for key in ('input_file', 'output_file'):
            if d[key] is not None:
                d[key] = str(d[key])
        return d

    def summary(self) -> str:
        """Generate a human-readable summary."""
        status = "SUCCESS" if self.success else "FAILED"
        lines = [
            f"Footprint Run: {status}",
            f"Input: {self.input_file}",
            f"Rows: {self.n_rows}",
            f"Pairs: {self.n_resolved}/{self.n_pairs} resolved",
            f"Roughness sectors: {', '.join(self.sectors_available) or 'none'}",
            f"Time: {self.processing_time:.2f}s",
        ]
        for reason, n in sorted(self.failure_counts.items()):
            lines.append(f"  {reason}: {n}")
        if self.error_message:
            lines.append(f"Error: {self.error_message}")
        return "\n".join(lines)


# =============================================================================
# Main Pipeline Class
# =============================================================================

class FootprintPipeline:
    """
    Orchestrates a complete footprint / canopy-overlay run.

    Parameters
    ----------
    config : PipelineConfig, optional
        Run configuration.
    model : callable, optional
        Footprint model. If None, ``config.model`` is imported.
    logger : logging.Logger, optional
        Logger instance for tracking progress.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        model: Optional[FootprintModel] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or PipelineConfig()
        self.logger = logger_check(logger)
        self.model = model

        self.logger.info("FootprintPipeline initialized")
        self.logger.debug(f"Configuration: {self.config.to_dict()}")

    # -------------------------------------------------------------------------
    # Setup (failures here abort the run)
    # -------------------------------------------------------------------------

    def resolve_model(self) -> FootprintModel:
        """Return the footprint model, importing it from the config if needed."""
        if self.model is None:
            if not self.config.model:
                raise ValueError("No footprint model given (set 'model' in the config)")
            self.model = load_model(self.config.model)
        return self.model

    def working_crs(self) -> CRS:
        crs = CRS.from_user_input(self.config.site.working_crs)
        if not crs.is_projected:
            raise ValueError(f"Working CRS must be projected (metres), got {crs.name}")
        return crs

    def tower_coordinate(self) -> Tuple[float, float]:
        """Tower position reprojected into the working CRS."""
        site = self.config.site
        transformer = Transformer.from_crs(site.tower_crs, self.working_crs(), always_xy=True)
        x, y = transformer.transform(site.tower_lon, site.tower_lat)
        if not (np.isfinite(x) and np.isfinite(y)):
            raise ValueError(
                f"Tower coordinate ({site.tower_lon}, {site.tower_lat}) cannot be "
                f"projected to {site.working_crs}"
            )
        self.logger.info(f"Tower at ({x:.1f}, {y:.1f}) in {site.working_crs}")
        return float(x), float(y)

    def load_layer(
        self,
        layer: Union[str, Path, gpd.GeoDataFrame],
        name: str,
    ) -> gpd.GeoDataFrame:
        """Read a vegetation layer and reproject it to the working CRS."""
        if isinstance(layer, gpd.GeoDataFrame):
            gdf = layer
        else:
            path = Path(layer)
            if not path.exists():
                raise FileNotFoundError(f"{name} layer not found: {path}")
            gdf = gpd.read_file(path)
            self.logger.info(f"  Read {len(gdf):,} {name} features from {path.name}")

        crs = self.working_crs()
        if gdf.crs is None:
            self.logger.warning(f"{name} layer has no CRS, assuming {crs.name}")
            gdf = gdf.set_crs(crs)
        elif gdf.crs != crs:
            gdf = gdf.to_crs(crs)
        return gdf[~(gdf.geometry.isna() | gdf.geometry.is_empty)]

    def estimate_roughness(self, observations: pd.DataFrame) -> RoughnessTable:
        """Per-sector roughness lengths from the prepared observations."""
        estimator = RoughnessEstimator(self.config.roughness, logger=self.logger)
        return estimator.estimate(observations)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(
        self,
        observations: Union[str, Path, pd.DataFrame],
        trees: Union[str, Path, gpd.GeoDataFrame],
        canopy: Union[str, Path, gpd.GeoDataFrame],
        output_dir: Optional[Union[str, Path]] = None,
        name: str = 'footprint',
    ) -> ProcessingResult:
        """
        Run the complete pipeline.

        Parameters
        ----------
        observations : str, Path or pd.DataFrame
            Observation table or CSV path.
        trees, canopy : str, Path or gpd.GeoDataFrame
            Tree-stem point layer and canopy polygon layer.
        output_dir : str or Path, optional
            Directory for output files. Nothing is saved if None.
        name : str, optional
            Prefix of the output files.

        Returns
        -------
        ProcessingResult
            Container with the augmented table and reports.

        Raises
        ------
        FileNotFoundError, KeyError, ValueError
            If a static input is missing or invalid.
        """
        start_time = datetime.now()
        cfg = self.config

        # Step 1: static inputs
        self.logger.info("Step 1/4: Loading static inputs...")
        input_file = None
        if isinstance(observations, pd.DataFrame):
            raw = observations
        else:
            input_file = Path(observations)
            raw = load_observations(input_file, logger=self.logger)
        obs = prepare_observations(
            raw,
            cfg.site,
            start_date=cfg.start_date,
            end_date=cfg.end_date,
            apply_ustar_filter=cfg.apply_ustar_filter,
            logger=self.logger,
        )
        model = self.resolve_model()
        tower = self.tower_coordinate()
        overlay = OverlayCalculator(
            self.load_layer(trees, 'tree'),
            self.load_layer(canopy, 'canopy'),
            logger=self.logger,
        )

        try:
            # Step 2: roughness
            self.logger.info("Step 2/4: Estimating roughness lengths...")
            table = self.estimate_roughness(obs)

            # Step 3: per-timestep footprints
            self.logger.info("Step 3/4: Computing footprints...")
            orchestrator = TimestepOrchestrator(
                model,
                overlay,
                table,
                tower,
                self.working_crs(),
                config=cfg.footprint,
                max_workers=cfg.max_workers,
                logger=self.logger,
            )
            results = orchestrator.run(obs)
            data = orchestrator.merge(obs, results)
            failures = failure_report(obs, results)

            reports = {
                'roughness': table.to_frame(),
                'failures': failures,
            }

            # Step 4: save
            output_file = None
            if output_dir:
                self.logger.info("Step 4/4: Saving output...")
                output_dir = Path(output_dir)
                output_file = self._save_output(data, output_dir, name)
                self._save_reports(reports, output_dir, name)
            else:
                self.logger.info("Step 4/4: Skipping save (no output_dir)")

            result = ProcessingResult(
                success=True,
                input_file=input_file,
                output_file=output_file,
                n_rows=len(obs),
                n_pairs=len(results),
                n_resolved=sum(r.ok for r in results),
                failure_counts={
                    str(k): int(v) for k, v in failures['reason'].value_counts().items()
                },
                sectors_available=table.available,
                processing_time=(datetime.now() - start_time).total_seconds(),
                reports=reports,
                data=data,
            )
            if output_dir:
                self._save_summary(result, Path(output_dir), name)

            self.logger.info(f"✓ Run complete: {result.processing_time:.2f}s")
            return result

        except Exception as e:
            processing_time = (datetime.now() - start_time).total_seconds()
            self.logger.error(f"✗ Run failed: {e}", exc_info=True)
            return ProcessingResult(
                success=False,
                input_file=input_file,
                n_rows=len(obs),
                processing_time=processing_time,
                error_message=str(e),
            )

    # -------------------------------------------------------------------------
    # Private Helper Methods
    # -------------------------------------------------------------------------

    def _save_output(self, df: pd.DataFrame, output_dir: Path, name: str) -> Path:
        """Save the augmented table."""
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = f"{name}_overlay_{timestamp}"

        fmt = self.config.output_format
        if fmt == 'csv':
            output_file = output_dir / f"{filename}.csv"
            df.to_csv(output_file, index=False)
        elif fmt == 'parquet':
            output_file = output_dir / f"{filename}.parquet"
            df.to_parquet(output_file, index=False)
        elif fmt == 'feather':
            output_file = output_dir / f"{filename}.feather"
            df.reset_index(drop=True).to_feather(output_file)
        else:
            raise ValueError(f"Unknown output format: {fmt}")

        self.logger.info(f"  Saved to {output_file}")
        return output_file

    def _save_reports(self, reports: Dict[str, pd.DataFrame], output_dir: Path, name: str) -> None:
        """Save roughness and failure reports as CSV."""
        report_dir = output_dir / 'reports'
        report_dir.mkdir(parents=True, exist_ok=True)
        for report_name, report_df in reports.items():
            filename = report_dir / f"{name}_{report_name}.csv"
            report_df.to_csv(filename, index=False)
            self.logger.debug(f"  Saved {report_name} report to {filename}")

    def _save_summary(self, result: ProcessingResult, output_dir: Path, name: str) -> None:
        """Save the run summary to JSON."""
        summary_file = output_dir / f"{name}_summary.json"
        summary = {
            'timestamp': datetime.now().isoformat(),
            'config': self.config.to_dict(),
            'result': result.to_dict(),
        }
        with open(summary_file, 'w') as f:
            json.dump(summary, f, indent=2, default=str)
        self.logger.info(f"Run summary saved to {summary_file}")


# =============================================================================
# Convenience Functions
# =============================================================================

def run_pipeline(
    observations: Union[str, Path, pd.DataFrame],
    trees: Union[str, Path, gpd.GeoDataFrame],
    canopy: Union[str, Path, gpd.GeoDataFrame],
    output_dir: Optional[Union[str, Path]] = None,
    **kwargs
) -> ProcessingResult:
    """
    Convenience function to run the complete pipeline.

    Parameters
    ----------
    observations, trees, canopy
        Inputs, see :meth:`FootprintPipeline.run`.
    output_dir : str or Path, optional
        Output directory.
    **kwargs
        Additional arguments passed to the FootprintPipeline constructor.

    Returns
    -------
    ProcessingResult
    """
    pipeline = FootprintPipeline(**kwargs)
    return pipeline.run(observations, trees, canopy, output_dir=output_dir)


# =============================================================================
# Command-Line Interface
# =============================================================================

def main(argv=None):
    """Command-line interface for the pipeline."""
    parser = argparse.ArgumentParser(
        description='Footprint climatology and canopy overlay with fluxcanopy',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with a site configuration file
  python -m fluxcanopy.pipeline --config site.yml --input obs.csv \\
      --trees stems.gpkg --canopy canopy.gpkg --model ffp:FFP --output results/

  # Four worker threads, parquet output
  python -m fluxcanopy.pipeline --config site.yml --input obs.csv \\
      --trees stems.gpkg --canopy canopy.gpkg --output results/ \\
      --workers 4 --format parquet
        """
    )

    parser.add_argument('--input', '-i', required=True,
                        help='Observation table (CSV)')
    parser.add_argument('--trees', required=True,
                        help='Tree-stem point layer')
    parser.add_argument('--canopy', required=True,
                        help='Canopy polygon layer')
    parser.add_argument('--output', '-o', required=True,
                        help='Output directory')
    parser.add_argument('--config', '-c',
                        help='YAML configuration file')
    parser.add_argument('--model', '-m',
                        help="Footprint model as 'package.module:function'")
    parser.add_argument('--name', default='footprint',
                        help='Output file prefix (default: footprint)')
    parser.add_argument('--workers', type=int,
                        help='Worker threads for footprint pairs')
    parser.add_argument('--format', choices=['csv', 'parquet', 'feather'],
                        help='Output file format')

    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output (DEBUG level)')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Quiet output (WARNING level only)')

    args = parser.parse_args(argv)

    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(levelname)s [%(asctime)s] %(name)s – %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    settings = PipelineConfig.from_yaml(args.config).to_dict() if args.config else {}
    if args.model:
        settings['model'] = args.model
    if args.workers:
        settings['max_workers'] = args.workers
    if args.format:
        settings['output_format'] = args.format
    config = PipelineConfig.from_dict(settings)

    pipeline = FootprintPipeline(config=config, logger=logging.getLogger('fluxcanopy'))
    result = pipeline.run(
        args.input,
        trees=args.trees,
        canopy=args.canopy,
        output_dir=args.output,
        name=args.name,
    )
    print("\n" + result.summary())
    return 0 if result.success else 1


if __name__ == '__main__':
    raise SystemExit(main())
