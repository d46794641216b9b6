"""
Training sample extraction: composite pixel values at labelled points.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import xarray as xr
from shapely.geometry import Point

from ..core.aoi import WGS84
from ..exceptions import InsufficientTrainingDataError, ValidationError
from ..utils.raster_utils import as_float, get_crs, grid_shape, grid_transform, nodata_value, require_bands

logger = logging.getLogger(__name__)

Label = Union[str, int]


@dataclass(frozen=True)
class LabeledPoint:
    """A coordinate with a land-cover class label (name or integer code)."""

    x: float
    y: float
    label: Label


class LandCoverClasses:
    """
    Mapping between class codes and names, e.g. ``{0: 'Forest', 1: 'Non-Forest', 2: 'Water'}``.
    """

    def __init__(self, classes: Mapping[Union[str, int], str]):
        if not classes:
            raise ValidationError("At least one land-cover class must be configured")
        self.names: Dict[int, str] = {int(code): str(name) for code, name in classes.items()}
        self._codes_by_name = {name.lower(): code for code, name in self.names.items()}

    @classmethod
    def from_config(cls, config) -> "LandCoverClasses":
        return cls(config.get('classification.classes'))

    @property
    def codes(self) -> List[int]:
        return sorted(self.names)

    def code_for(self, label: Label) -> int:
        """Resolve a class name or code to its integer code."""
        if isinstance(label, (int, np.integer)) and int(label) in self.names:
            return int(label)
        key = str(label).strip()
        if key.lower() in self._codes_by_name:
            return self._codes_by_name[key.lower()]
        if key.lstrip('-').isdigit() and int(key) in self.names:
            return int(key)
        raise ValidationError(f"Unknown land-cover label '{label}'. Configured: {self.names}")

    def name_for(self, code: int) -> str:
        return self.names[int(code)]


@dataclass(frozen=True)
class TrainingTable:
    """Rows of (feature vector, class code) sampled from a composite."""

    features: np.ndarray
    labels: np.ndarray
    feature_names: tuple
    dropped_count: int = 0

    def __len__(self) -> int:
        return int(self.labels.shape[0])

    def class_counts(self) -> Dict[int, int]:
        codes, counts = np.unique(self.labels, return_counts=True)
        return {int(c): int(n) for c, n in zip(codes, counts)}

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame(self.features, columns=list(self.feature_names))
        frame['landcover'] = self.labels
        return frame


def labeled_points_from_geodataframe(gdf: gpd.GeoDataFrame, label_column: str = 'landcover') -> List[LabeledPoint]:
    """Build labelled points from point geometries and a label column."""
    if label_column not in gdf.columns:
        raise ValidationError(f"Column '{label_column}' not found in training data")
    return [
        LabeledPoint(x=geom.x, y=geom.y, label=label)
        for geom, label in zip(gdf.geometry, gdf[label_column])
    ]


class TrainingSampleExtractor:
    """
    Samples composite bands at labelled point locations.

    A point is dropped when it falls outside the grid or when any feature band
    is nodata at its pixel; the number of dropped points is returned with the
    table.
    """

    def __init__(self, classes: LandCoverClasses, feature_bands: Sequence[str],
                 points_crs: str = WGS84):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.classes = classes
        self.feature_bands = list(feature_bands)
        self.points_crs = points_crs

    @classmethod
    def from_config(cls, config) -> "TrainingSampleExtractor":
        return cls(
            classes=LandCoverClasses.from_config(config),
            feature_bands=config.get('classification.feature_bands'),
            points_crs=config.get('classification.points_crs', WGS84),
        )

    def _project(self, points: Sequence[LabeledPoint], raster_crs) -> np.ndarray:
        xy = np.array([[p.x, p.y] for p in points], dtype=float).reshape(-1, 2)
        if raster_crs is None or len(points) == 0:
            return xy
        series = gpd.GeoSeries([Point(x, y) for x, y in xy], crs=self.points_crs)
        projected = series.to_crs(raster_crs)
        return np.column_stack([projected.x.values, projected.y.values])

    def extract(self, composite: xr.Dataset, labeled_points: Iterable[LabeledPoint]) -> TrainingTable:
        """
        Join labelled points with the composite pixel values beneath them.

        Raises:
            MissingBandError: A feature band is absent from the composite
            ValidationError: A point label is not a configured class
            InsufficientTrainingDataError: A configured class has no surviving sample
        """
        points = list(labeled_points)
        bands = require_bands(composite, self.feature_bands, "composite")
        codes = np.array([self.classes.code_for(p.label) for p in points], dtype=int)

        xy = self._project(points, get_crs(composite))
        rows_n, cols_n = grid_shape(composite)
        inverse = ~grid_transform(composite)
        pixel = [inverse @ (x, y) for x, y in xy]
        cols = np.array([int(np.floor(c)) for c, _ in pixel], dtype=int).reshape(-1)
        rows = np.array([int(np.floor(r)) for _, r in pixel], dtype=int).reshape(-1)
        inside = (rows >= 0) & (rows < rows_n) & (cols >= 0) & (cols < cols_n)

        features = np.full((len(points), len(bands)), np.nan, dtype="float64")
        if inside.any():
            r_idx = xr.DataArray(rows[inside], dims="point")
            c_idx = xr.DataArray(cols[inside], dims="point")
            for j, band in enumerate(bands):
                da = composite[band]
                sampled = np.asarray(da.isel(y=r_idx, x=c_idx).values)
                features[inside, j] = as_float(sampled, nodata_value(da))

        keep = inside & np.isfinite(features).all(axis=1)
        dropped = int((~keep).sum())
        if dropped:
            self.logger.warning(
                f"Dropped {dropped} of {len(points)} training points outside the valid composite footprint"
            )

        table = TrainingTable(
            features=features[keep],
            labels=codes[keep],
            feature_names=tuple(bands),
            dropped_count=dropped,
        )
        counts = table.class_counts()
        missing = [self.classes.name_for(c) for c in self.classes.codes if counts.get(c, 0) == 0]
        if missing:
            raise InsufficientTrainingDataError(
                f"No training samples for class(es) {missing} "
                f"({len(table)} samples kept, {dropped} dropped)"
            )
        self.logger.info(f"Extracted {len(table)} training samples: {counts}")
        return table
