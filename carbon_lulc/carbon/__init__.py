"""
Biomass and carbon estimation from spectral indices.
"""

from .biomass import BiomassEstimator
from .carbon_stock import CarbonEstimator

__all__ = ['BiomassEstimator', 'CarbonEstimator']
