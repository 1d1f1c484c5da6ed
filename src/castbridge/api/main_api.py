"""
Local HTTP API for the castbridge server
Device listing and commands, system health, and the audio origin for receivers
"""

from fastapi import FastAPI
from typing import Dict
import logging

from castbridge.media.audio_cache import AudioBufferCache
from .device_routes import create_device_routes
from .media_routes import create_media_routes
from .system_routes import create_system_routes

logger = logging.getLogger(__name__)


class CastAPI:
    """FastAPI application wrapper; the server runs it with uvicorn"""

    def __init__(self, registry, pairing, audio_cache: AudioBufferCache, config: Dict, server=None):
        self.registry = registry
        self.pairing = pairing
        self.audio_cache = audio_cache
        self.config = config
        self.server = server
        self.app = FastAPI(
            title="castbridge",
            description="Google Cast discovery, stereo pair routing and audio delivery",
            version="1.0.0"
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes using modular approach"""
        self.app.include_router(create_device_routes(self.registry, self.pairing))
        self.app.include_router(create_system_routes(self.registry, self.server))
        self.app.include_router(create_media_routes(self.audio_cache))
