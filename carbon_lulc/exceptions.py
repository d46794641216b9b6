"""
Custom exceptions for the Carbon LULC library.
"""


class CarbonLULCError(Exception):
    """Base exception for Carbon LULC library."""
    pass


class ConfigurationError(CarbonLULCError):
    """Raised when configuration is invalid or missing."""
    pass


class DataError(CarbonLULCError):
    """Raised when data processing fails."""
    pass


class MLError(CarbonLULCError):
    """Raised when machine learning operations fail."""
    pass


class SatelliteError(CarbonLULCError):
    """Raised when satellite data retrieval fails."""
    pass


class ValidationError(CarbonLULCError):
    """Raised when data validation fails."""
    pass


class NoScenesFoundError(SatelliteError):
    """Raised when no scene passes the bounds, date and cloud filters."""
    pass


class MissingBandError(DataError):
    """Raised when a required band is absent from a scene or composite."""
    pass


class InsufficientTrainingDataError(MLError):
    """Raised when a configured class has no usable training sample."""
    pass


class FeatureMismatchError(MLError):
    """Raised when a raster does not provide the bands a model was trained on."""
    pass


class AggregationBudgetExceededError(DataError):
    """Raised when a reduction would touch more pixels than allowed."""
    pass


class GeometryError(ValidationError):
    """Raised for invalid or self-intersecting AOI / region geometries."""
    pass


class ProcessingTimeoutError(CarbonLULCError, TimeoutError):
    """Raised when an operation exceeds its caller-supplied timeout."""
    pass


class OperationCancelledError(CarbonLULCError):
    """Raised when a tiled operation is cancelled between tiles."""
    pass
