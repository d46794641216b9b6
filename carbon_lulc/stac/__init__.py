"""
Scene retrieval from STAC catalogues and in-memory sources.
"""

from .scene_repository import (
    InMemorySceneRepository,
    Scene,
    SceneRepository,
    STACSceneRepository,
    filter_scenes,
)

__all__ = [
    'InMemorySceneRepository',
    'Scene',
    'SceneRepository',
    'STACSceneRepository',
    'filter_scenes',
]
