"""
Machine learning modules: training samples and land-cover classification.
"""

from .classifier import (
    CatBoostEnsemble,
    ClassifierModel,
    EnsembleClassifier,
    LandCoverClassifier,
    RandomForestEnsemble,
    create_backend,
)
from .training_samples import (
    LabeledPoint,
    LandCoverClasses,
    TrainingSampleExtractor,
    TrainingTable,
    labeled_points_from_geodataframe,
)

__all__ = [
    'CatBoostEnsemble',
    'ClassifierModel',
    'EnsembleClassifier',
    'LandCoverClassifier',
    'RandomForestEnsemble',
    'create_backend',
    'LabeledPoint',
    'LandCoverClasses',
    'TrainingSampleExtractor',
    'TrainingTable',
    'labeled_points_from_geodataframe',
]
