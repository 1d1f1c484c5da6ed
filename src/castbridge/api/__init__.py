"""
API module for device control and monitoring
"""

from .main_api import CastAPI
from .device_routes import create_device_routes
from .media_routes import create_media_routes
from .system_routes import create_system_routes

__all__ = ['CastAPI', 'create_device_routes', 'create_media_routes', 'create_system_routes']
