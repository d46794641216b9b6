"""
Satellite data processing: cloud masking and temporal compositing.
"""

from .cloud_masking import CloudMasker
from .compositing import TemporalCompositor

__all__ = ['CloudMasker', 'TemporalCompositor']
