"""
Land cover, AGB and CO2eq pipeline.

Wires scene retrieval, cloud masking, compositing, index calculation,
classification, biomass and carbon estimation, zonal statistics and
histograms into one run over an area of interest.
"""

import logging
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import geopandas as gpd
import xarray as xr

from .. import __version__
from ..analysis import HistogramBucket, HistogramSampler, ZonalStatistics, ZonalStats
from ..carbon import BiomassEstimator, CarbonEstimator
from ..config import ConfigManager
from ..exceptions import CarbonLULCError, ConfigurationError
from ..ml_analysis import (
    ClassifierModel,
    LabeledPoint,
    LandCoverClassifier,
    TrainingSampleExtractor,
    TrainingTable,
    labeled_points_from_geodataframe,
)
from ..satellite_processing import CloudMasker, TemporalCompositor
from ..stac.scene_repository import SceneRepository, STACSceneRepository
from ..utils.geotiff_utils import export_geotiff
from ..utils.logging_utils import timer
from ..utils.spectral_indices import IndexCalculator
from ..utils.tiling import CancellationToken
from .aoi import AreaOfInterest

logger = logging.getLogger(__name__)

STATISTICS_LAYERS = ('AGB', 'CarbonStock', 'CO2eq')
HISTOGRAM_LAYERS = ('AGB', 'CO2eq')


@dataclass
class PipelineResult:
    """Artifacts of one pipeline run; missing artifacts are None."""

    n_scenes: int = 0
    composite: Optional[xr.Dataset] = None
    ndvi: Optional[xr.DataArray] = None
    training_table: Optional[TrainingTable] = None
    model: Optional[ClassifierModel] = None
    landcover: Optional[xr.DataArray] = None
    agb: Optional[xr.DataArray] = None
    carbon_stock: Optional[xr.DataArray] = None
    co2eq: Optional[xr.DataArray] = None
    zonal_stats: Dict[str, ZonalStats] = field(default_factory=dict)
    histograms: Dict[str, List[HistogramBucket]] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def rasters(self) -> Dict[str, xr.DataArray]:
        layers = {
            'landcover': self.landcover,
            'NDVI': self.ndvi,
            'AGB': self.agb,
            'CarbonStock': self.carbon_stock,
            'CO2eq': self.co2eq,
        }
        return {name: raster for name, raster in layers.items() if raster is not None}

    def summary(self) -> Dict[str, Any]:
        """JSON-serialisable overview of the run."""
        return {
            'n_scenes': self.n_scenes,
            'training_samples': len(self.training_table) if self.training_table is not None else 0,
            'dropped_training_points': (
                self.training_table.dropped_count if self.training_table is not None else None
            ),
            'rasters': sorted(self.rasters()),
            'zonal_stats': {name: stats.to_dict() for name, stats in self.zonal_stats.items()},
            'histograms': {
                name: [bucket.to_dict() for bucket in buckets]
                for name, buckets in self.histograms.items()
            },
            'failures': dict(self.failures),
        }


class LandCoverCarbonPipeline:
    """
    End-to-end land cover and carbon workflow.

    Scene retrieval and compositing failures abort the run. After the
    composite exists, the classification branch and the biomass branch are
    independent: unless ``strict`` is set, a failure in one is recorded in
    ``PipelineResult.failures`` and the other branch's artifacts are kept.

    Example:
        >>> pipeline = LandCoverCarbonPipeline("config.yaml")
        >>> result = pipeline.run(AreaOfInterest.from_file("aoi.shp"), points)
        >>> result.summary()['zonal_stats']['CO2eq']
    """

    def __init__(self,
                 config: Optional[Union[ConfigManager, str, Path, Dict]] = None,
                 scene_repository: Optional[SceneRepository] = None,
                 cancel_token: Optional[CancellationToken] = None):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.config_manager = ConfigManager.from_any(config)
        if not self.config_manager.validate_config():
            raise ConfigurationError("Invalid configuration, see log for details")
        self.cancel_token = cancel_token or CancellationToken()

        cfg = self.config_manager
        self.scene_repository = scene_repository or STACSceneRepository(cfg)
        self.cloud_masker = CloudMasker.from_config(cfg)
        self.compositor = TemporalCompositor.from_config(cfg)
        self.index_calculator = IndexCalculator.from_config(cfg)
        self.sample_extractor = TrainingSampleExtractor.from_config(cfg)
        self.classifier = LandCoverClassifier.from_config(cfg)
        self.biomass_estimator = BiomassEstimator.from_config(cfg)
        self.carbon_estimator = CarbonEstimator.from_config(cfg)
        self.zonal_statistics = ZonalStatistics.from_config(cfg)
        self.histogram_sampler = HistogramSampler.from_config(cfg)

    @property
    def timeout(self) -> Optional[float]:
        return self.config_manager.get('processing.timeout_seconds')

    def cancel(self) -> None:
        """Ask a running pipeline to stop at the next tile boundary."""
        self.cancel_token.cancel()

    def _stage(self, result: PipelineResult, name: str, strict: bool, func: Callable, *args, **kwargs):
        try:
            with timer(name, self.logger):
                return func(*args, **kwargs)
        except CarbonLULCError as e:
            if strict:
                raise
            self.logger.error(f"{name} failed: {e}")
            result.failures[name] = f"{type(e).__name__}: {e}"
            return None

    def build_composite(self, aoi: AreaOfInterest,
                        date_range: Optional[Sequence[str]] = None,
                        cloud_threshold: Optional[float] = None) -> xr.Dataset:
        """
        Fetch, mask and composite scenes, then append the configured index bands.

        Raises:
            NoScenesFoundError: No scene passes the date and cloud filters
        """
        cfg = self.config_manager
        date_range = tuple(date_range or cfg.get('satellite.date_range'))
        if cloud_threshold is None:
            cloud_threshold = cfg.get('satellite.cloud_cover_threshold')

        scenes = self.scene_repository.fetch(aoi, date_range, cloud_threshold, timeout=self.timeout)
        self.cancel_token.raise_if_cancelled()
        masked = self.cloud_masker.mask_all(scenes)
        composite = self.compositor.composite(
            masked, aoi=aoi, timeout=self.timeout, cancel_token=self.cancel_token
        )
        return self.index_calculator.add_index_bands(composite, cfg.get('indices', ['NDVI']))

    def classify(self, composite: xr.Dataset, labeled_points: Iterable[LabeledPoint],
                 result: Optional[PipelineResult] = None) -> xr.DataArray:
        """Extract training samples, train the classifier and classify ``composite``."""
        table = self.sample_extractor.extract(composite, labeled_points)
        model = self.classifier.train(
            table,
            self.config_manager.get('classification.feature_bands'),
            timeout=self.config_manager.get('classification.timeout_seconds'),
        )
        if result is not None:
            result.training_table = table
            result.model = model
        return self.classifier.apply(
            model, composite, timeout=self.timeout, cancel_token=self.cancel_token
        )

    def estimate_carbon(self, ndvi: xr.DataArray, result: PipelineResult) -> None:
        """AGB, carbon stock and CO2eq from NDVI, stored on ``result``."""
        kwargs = {'timeout': self.timeout, 'cancel_token': self.cancel_token}
        result.agb = self.biomass_estimator.estimate(ndvi, **kwargs)
        result.carbon_stock = self.carbon_estimator.carbon_stock(result.agb, **kwargs)
        result.co2eq = self.carbon_estimator.co2eq(result.carbon_stock, **kwargs)

    def run(self,
            aoi: AreaOfInterest,
            labeled_points: Union[Iterable[LabeledPoint], gpd.GeoDataFrame],
            date_range: Optional[Sequence[str]] = None,
            cloud_threshold: Optional[float] = None,
            strict: bool = False) -> PipelineResult:
        """
        Run the full workflow for ``aoi``.

        Args:
            aoi: Area of interest
            labeled_points: LabeledPoint objects or a point GeoDataFrame with a
                'landcover' column, in WGS84
            date_range: (start, end) dates, defaults to the configured range
            cloud_threshold: Scene cloud-cover limit in percent
            strict: Re-raise the first branch failure instead of recording it

        Returns:
            PipelineResult
        """
        if isinstance(labeled_points, gpd.GeoDataFrame):
            if labeled_points.crs is not None:
                labeled_points = labeled_points.to_crs(self.sample_extractor.points_crs)
            labeled_points = labeled_points_from_geodataframe(labeled_points)
        else:
            labeled_points = list(labeled_points)

        self.logger.info("=" * 60)
        self.logger.info("  LAND COVER, AGB & CO2eq PIPELINE")
        self.logger.info("=" * 60)

        result = PipelineResult()
        with timer("Composite", self.logger):
            composite = self.build_composite(aoi, date_range, cloud_threshold)
        result.composite = composite
        result.n_scenes = int(composite.attrs.get('n_scenes', 0))
        result.ndvi = composite[self.config_manager.get('biomass.ndvi_band', 'NDVI')]

        result.landcover = self._stage(
            result, 'classification', strict, self.classify, composite, labeled_points, result
        )
        self._stage(result, 'biomass', strict, self.estimate_carbon, result.ndvi, result)

        layers = {'AGB': result.agb, 'CarbonStock': result.carbon_stock, 'CO2eq': result.co2eq}
        for name in STATISTICS_LAYERS:
            if layers[name] is None:
                continue
            stats = self._stage(
                result, f'statistics:{name}', strict, self.zonal_statistics.compute, layers[name], aoi,
                timeout=self.timeout, cancel_token=self.cancel_token,
            )
            if stats is not None:
                result.zonal_stats[name] = stats
        for name in HISTOGRAM_LAYERS:
            if layers[name] is None:
                continue
            buckets = self._stage(
                result, f'histogram:{name}', strict, self.histogram_sampler.frequency, layers[name], aoi,
                timeout=self.timeout, cancel_token=self.cancel_token,
            )
            if buckets is not None:
                result.histograms[name] = buckets

        if result.failures:
            self.logger.warning(f"Pipeline finished with failures: {sorted(result.failures)}")
        else:
            self.logger.info("Pipeline finished successfully")
        return result

    def export(self, result: PipelineResult, output_dir: Optional[Union[str, Path]] = None) -> Dict[str, str]:
        """Write every raster artifact of ``result`` as GeoTIFF."""
        cfg = self.config_manager
        output_dir = Path(output_dir or cfg.get('output.output_directory', './outputs'))
        project = cfg.get('project.name', 'carbon_lulc')
        paths = {}
        for name, raster in result.rasters().items():
            nodata = cfg.get('output.class_nodata' if name == 'landcover' else 'output.nodata_value', -9999)
            paths[name] = export_geotiff(
                raster,
                output_dir / f"{project}_{name}.tif",
                nodata_val=nodata,
                compress=cfg.get('output.compression', 'lzw'),
            )
        return paths

    def get_system_info(self) -> Dict[str, Any]:
        """
        Get information about the current system setup.

        Returns:
            Dictionary with library versions and the active configuration
        """
        import numpy
        import rasterio
        import sklearn

        return {
            'version': __version__,
            'python': platform.python_version(),
            'numpy': numpy.__version__,
            'xarray': xr.__version__,
            'rasterio': rasterio.__version__,
            'geopandas': gpd.__version__,
            'scikit-learn': sklearn.__version__,
            'scene_repository': type(self.scene_repository).__name__,
            'config': self.config_manager.config,
        }

    def __repr__(self) -> str:
        return f"LandCoverCarbonPipeline(project={self.config_manager.get('project.name', 'unknown')})"
