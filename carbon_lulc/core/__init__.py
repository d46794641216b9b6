"""
Core functionality: areas of interest and the pipeline.
"""

from .aoi import AreaOfInterest, region_geometry, validate_geometry

__all__ = ['AreaOfInterest', 'region_geometry', 'validate_geometry']
