"""
Land-cover classification with tree ensembles.

The classifier is a small interface (``fit`` / ``predict``) with two
backends: a scikit-learn random forest voting by tree majority, and CatBoost
gradient-boosted trees. Models are applied to composites tile by tile.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import numpy as np
import xarray as xr
from sklearn.ensemble import RandomForestClassifier
from sklearn.metrics import accuracy_score, cohen_kappa_score, confusion_matrix

from ..exceptions import ConfigurationError, FeatureMismatchError, InsufficientTrainingDataError, MLError
from ..utils.raster_utils import finalize_raster, get_crs, grid_shape, read_block
from ..utils.tiling import CancellationToken, Tile, TileExecutor, count_tiles, iter_tiles, run_with_timeout
from .training_samples import LandCoverClasses, TrainingTable

logger = logging.getLogger(__name__)

DEFAULT_CLASS_NODATA = -9999


# --------------------------------------------------------------------------- #
# Ensemble backends
# --------------------------------------------------------------------------- #
class EnsembleClassifier(ABC):
    """Tree-ensemble capability used by LandCoverClassifier."""

    name = "ensemble"

    def __init__(self, n_trees: int = 100, random_state: Optional[int] = 42, n_jobs: int = 1):
        if int(n_trees) < 1:
            raise ConfigurationError(f"n_trees must be at least 1, got {n_trees}")
        self.n_trees = int(n_trees)
        self.random_state = random_state
        self.n_jobs = n_jobs

    @abstractmethod
    def fit(self, X: np.ndarray, y: np.ndarray) -> Any:
        """Fit and return an estimator."""

    @abstractmethod
    def predict(self, estimator: Any, X: np.ndarray) -> np.ndarray:
        """Predict integer class codes for rows of ``X``."""


class RandomForestEnsemble(EnsembleClassifier):
    """Bagged decision trees; each pixel takes the class most trees vote for."""

    name = "random_forest"

    def fit(self, X, y):
        forest = RandomForestClassifier(
            n_estimators=self.n_trees,
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )
        return forest.fit(X, y)

    def predict(self, estimator, X):
        # Trees are fitted on encoded targets: predictions index estimator.classes_
        n_rows = X.shape[0]
        votes = np.zeros((n_rows, len(estimator.classes_)), dtype=np.int32)
        rows = np.arange(n_rows)
        for tree in estimator.estimators_:
            votes[rows, tree.predict(X).astype(int)] += 1
        # argmax breaks ties towards the lowest class code
        return estimator.classes_[np.argmax(votes, axis=1)].astype(int)


class CatBoostEnsemble(EnsembleClassifier):
    """Gradient-boosted trees, one boosting iteration per tree."""

    name = "gbm"

    def fit(self, X, y):
        from catboost import CatBoostClassifier

        model = CatBoostClassifier(
            iterations=self.n_trees,
            random_seed=self.random_state,
            thread_count=self.n_jobs,
            verbose=False,
            allow_writing_files=False,
        )
        return model.fit(X, y)

    def predict(self, estimator, X):
        return np.asarray(estimator.predict(X)).reshape(-1).astype(int)


BACKENDS = {
    RandomForestEnsemble.name: RandomForestEnsemble,
    CatBoostEnsemble.name: CatBoostEnsemble,
}


def create_backend(algorithm: str, **kwargs) -> EnsembleClassifier:
    try:
        return BACKENDS[algorithm.lower()](**kwargs)
    except KeyError:
        raise ConfigurationError(f"Unsupported algorithm: {algorithm}. Choose from {sorted(BACKENDS)}")


# --------------------------------------------------------------------------- #
# Model and classifier
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class ClassifierModel:
    """Fitted ensemble plus the feature order it expects."""

    estimator: Any
    backend: EnsembleClassifier
    feature_names: tuple
    class_codes: tuple
    n_training_samples: int

    def predict(self, X: np.ndarray) -> np.ndarray:
        return self.backend.predict(self.estimator, X)


class LandCoverClassifier:
    """
    Trains an ensemble on a TrainingTable and classifies composites per pixel.

    When ``classes`` is given, training requires at least one sample of every
    configured class; otherwise it requires at least two distinct classes.
    """

    def __init__(self,
                 backend: Optional[EnsembleClassifier] = None,
                 classes: Optional[LandCoverClasses] = None,
                 class_nodata: int = DEFAULT_CLASS_NODATA,
                 tile_size: int = 512,
                 max_workers: int = 1,
                 show_progress: bool = False):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.backend = backend or RandomForestEnsemble()
        self.classes = classes
        self.class_nodata = int(class_nodata)
        self.tile_size = int(tile_size)
        self.max_workers = max_workers
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config) -> "LandCoverClassifier":
        classification = config.get_classification_config()
        processing = config.get_processing_config()
        backend = create_backend(
            classification.get('algorithm', 'random_forest'),
            n_trees=classification.get('n_trees', 100),
            random_state=classification.get('random_state', 42),
            n_jobs=classification.get('n_jobs', 1),
        )
        return cls(
            backend=backend,
            classes=LandCoverClasses(classification.get('classes')),
            class_nodata=config.get('output.class_nodata', DEFAULT_CLASS_NODATA),
            tile_size=processing.get('tile_size', 512),
            max_workers=processing.get('max_workers', 1),
            show_progress=bool(processing.get('show_progress', False)),
        )

    def _check_class_coverage(self, labels: np.ndarray) -> None:
        present = set(int(c) for c in np.unique(labels))
        if self.classes is not None:
            missing = [self.classes.name_for(c) for c in self.classes.codes if c not in present]
            if missing:
                raise InsufficientTrainingDataError(f"No training samples for class(es) {missing}")
        elif len(present) < 2:
            raise InsufficientTrainingDataError(
                f"Training needs at least two classes, got {sorted(present)}"
            )

    def train(self,
              training_table: TrainingTable,
              feature_band_names: Optional[Sequence[str]] = None,
              timeout: Optional[float] = None) -> ClassifierModel:
        """
        Fit the ensemble on ``training_table``.

        Args:
            training_table: Output of TrainingSampleExtractor.extract
            feature_band_names: Feature order to train on (defaults to the table's)
            timeout: Seconds before training fails with ProcessingTimeoutError
        """
        names = list(feature_band_names or training_table.feature_names)
        missing = [n for n in names if n not in training_table.feature_names]
        if missing:
            raise FeatureMismatchError(
                f"Training table has no feature(s) {missing}; available {list(training_table.feature_names)}"
            )
        if len(training_table) == 0:
            raise InsufficientTrainingDataError("Training table is empty")

        columns = [training_table.feature_names.index(n) for n in names]
        X = training_table.features[:, columns]
        y = training_table.labels
        self._check_class_coverage(y)

        self.logger.info(
            f"Training {self.backend.name} with {self.backend.n_trees} trees on "
            f"{len(y)} samples x {len(names)} features (seed {self.backend.random_state})"
        )
        try:
            estimator = run_with_timeout(self.backend.fit, timeout, X, y,
                                         description="Classifier training")
        except ValueError as e:
            raise MLError(f"Classifier training failed: {e}") from e

        return ClassifierModel(
            estimator=estimator,
            backend=self.backend,
            feature_names=tuple(names),
            class_codes=tuple(int(c) for c in np.unique(y)),
            n_training_samples=int(len(y)),
        )

    def apply(self,
              model: ClassifierModel,
              composite: xr.Dataset,
              timeout: Optional[float] = None,
              cancel_token: Optional[CancellationToken] = None) -> xr.DataArray:
        """
        Classify every pixel of ``composite``.

        Pixels with any nodata feature are set to the class nodata value.

        Raises:
            FeatureMismatchError: The composite lacks a band the model was trained on
        """
        missing = [f for f in model.feature_names if f not in composite.data_vars]
        if missing:
            raise FeatureMismatchError(
                f"Composite lacks trained feature band(s) {missing}; "
                f"available {list(composite.data_vars)}"
            )

        shape = grid_shape(composite)
        bands = [composite[f] for f in model.feature_names]

        def classify(tile: Tile) -> np.ndarray:
            blocks = [read_block(band, tile.rows, tile.cols) for band in bands]
            X = np.stack([b.reshape(-1) for b in blocks], axis=1)
            valid = np.isfinite(X).all(axis=1)
            labels = np.full(X.shape[0], self.class_nodata, dtype=np.int16)
            if valid.any():
                labels[valid] = model.predict(X[valid])
            return labels.reshape(tile.shape)

        output = np.full(shape, self.class_nodata, dtype=np.int16)
        executor = TileExecutor(
            max_workers=self.max_workers,
            timeout=timeout,
            cancel_token=cancel_token,
            show_progress=self.show_progress,
            description="Classifying",
        )
        tiles = iter_tiles(shape[0], shape[1], self.tile_size)
        for tile, labels in executor.run(tiles, classify, total=count_tiles(shape[0], shape[1], self.tile_size)):
            output[tile.rows, tile.cols] = labels

        landcover = xr.DataArray(
            output,
            dims=("y", "x"),
            coords={"y": composite.coords["y"].values, "x": composite.coords["x"].values},
            name="landcover",
        )
        self.logger.info(f"Classified {shape[0]}x{shape[1]} pixels into classes {model.class_codes}")
        return finalize_raster(landcover, crs=get_crs(composite), nodata=self.class_nodata)

    def evaluate(self, model: ClassifierModel, table: TrainingTable) -> Dict[str, Any]:
        """Accuracy, Cohen's kappa and confusion matrix of ``model`` on ``table``."""
        columns = [table.feature_names.index(n) for n in model.feature_names]
        y_pred = model.predict(table.features[:, columns])
        labels = list(model.class_codes)
        return {
            'accuracy': float(accuracy_score(table.labels, y_pred)),
            'kappa': float(cohen_kappa_score(table.labels, y_pred, labels=labels)),
            'confusion_matrix': confusion_matrix(table.labels, y_pred, labels=labels).tolist(),
            'labels': labels,
        }
