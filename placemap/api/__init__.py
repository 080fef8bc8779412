"""
API layer: dataset loading and the HTTP server.
"""

from .loader import DatasetLoader
from .server import PixelEventDTO, create_app, wire_views

__all__ = [
    'DatasetLoader',
    'PixelEventDTO',
    'create_app',
    'wire_views',
]
