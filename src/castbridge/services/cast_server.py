"""
Cast Server - Main orchestrator for all services
"""

import asyncio
import logging
from typing import Dict, Optional, Set

import uvicorn

from castbridge.api.main_api import CastAPI
from castbridge.cast.client import ClientFactory, default_client_factory
from castbridge.cast.session import CastSessionDriver
from castbridge.config_loader import load_config, setup_logging
from castbridge.database.manager import DatabaseManager
from castbridge.discovery.listener import DiscoveryListener
from castbridge.discovery.models import CastRecord, PairMapping
from castbridge.discovery.pairing import PairingResolver
from castbridge.media.audio_cache import AudioBufferCache
from castbridge.media.tts import create_synthesizer
from castbridge.media.youtube import MediaResolver
from .command_router import CommandRouter
from .health_monitor import HealthMonitor
from .registry_sync import RegistrySync

logger = logging.getLogger(__name__)


class CastServer:
    """Main server wiring discovery, pairing, registry, health polling and command routing"""

    def __init__(self, config_path: str = "config/config.yaml", config: Optional[Dict] = None,
                 store=None, client_factory: Optional[ClientFactory] = None):
        self.config = config if config is not None else load_config(config_path)
        setup_logging(self.config)

        self.db = store if store is not None else DatabaseManager(self.config)
        self.client_factory = client_factory or default_client_factory(
            self.config['cast'].get('request_timeout_seconds', 10)
        )

        self.registry = RegistrySync(self.db, self.config['instance']['namespace'])
        self.pairing = PairingResolver()
        self.discovery = DiscoveryListener(self.config['discovery'])
        self.health = HealthMonitor(self.registry, self.pairing, self.client_factory, self.config)
        self.audio_cache = AudioBufferCache(self.config['tts']['buffer_retention_seconds'])
        self.driver = CastSessionDriver(self.client_factory, self.config['cast'])
        self.router = CommandRouter(
            self.registry, self.pairing, self.driver,
            create_synthesizer(self.config['tts']), MediaResolver(), self.audio_cache,
            self.client_factory, self.config
        )
        self.api = CastAPI(self.registry, self.pairing, self.audio_cache, self.config, server=self)

        self.running = False
        self.tasks = []
        self._record_tasks: Set[asyncio.Task] = set()

        self.discovery.add_handler(self._on_cast_record)
        self.pairing.add_listener(self._on_pair_mapping)

    async def start(self):
        """Start all server services"""
        logger.info("Starting castbridge server...")

        try:
            await self.db.initialize()
            logger.info("Database initialized successfully")

            await self.registry.ensure_instance_objects()
            self.db.subscribe_states(f"{self.registry.namespace}.*", self.router.handle_state_change)
            logger.info(f"Command router subscribed to {self.registry.namespace}.*")

            await self.discovery.start()

            self.running = True
            self.tasks = [
                asyncio.create_task(self._discovery_service()),
                asyncio.create_task(self._health_service()),
            ]
            logger.info(f"All services started successfully ({len(self.tasks)} background tasks)")

            await self._start_api_server()

        except Exception as e:
            logger.error(f"Server startup failed: {e}")
            await self.stop()
            raise

    async def stop(self):
        """Stop all server services gracefully"""
        if not self.running and not self.tasks:
            await self._close_resources()
            return
        logger.info("Stopping server...")
        self.running = False

        for task in self.tasks:
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        if self._record_tasks:
            await asyncio.gather(*list(self._record_tasks), return_exceptions=True)

        await self._close_resources()
        logger.info("Server stopped")

    async def _close_resources(self):
        try:
            await self.discovery.stop()
        except Exception as e:
            logger.error(f"Error stopping discovery listener: {e}")
        await self.db.close()

    # ================== DISCOVERY ==================

    async def scan_network(self):
        """On-demand discovery query"""
        logger.info("[DISCOVERY] Manual rescan requested")
        await self.discovery.scan()

    def _on_cast_record(self, record: CastRecord):
        # Pairing indexes update synchronously so concurrent records never see partial state
        self.pairing.add(record)
        self._spawn(self._register_record(record))

    def _on_pair_mapping(self, mapping: PairMapping):
        self._spawn(self.registry.tag_pair(mapping))

    async def _register_record(self, record: CastRecord):
        await self.registry.upsert_device(record)
        mapping = self.pairing.get_mapping(record.id)
        if mapping is not None:
            await self.registry.tag_pair(mapping)

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(self._guarded(coro))
        self._record_tasks.add(task)
        task.add_done_callback(self._record_tasks.discard)

    @staticmethod
    async def _guarded(coro):
        try:
            await coro
        except Exception as e:
            logger.error(f"[REGISTRY] Update failed: {e}")

    async def _discovery_service(self):
        """Background service for periodic discovery queries"""
        scan_interval = self.config['discovery']['scan_interval_seconds']

        logger.info(f"Discovery service started (every {scan_interval} seconds)")

        while self.running:
            try:
                await asyncio.sleep(scan_interval)
                if not self.running:
                    break

                await self.discovery.scan()
                logger.debug(f"[DISCOVERY] {self.discovery.records_emitted} records from "
                             f"{self.discovery.responses_seen} resolved services so far")

            except Exception as e:
                logger.error(f"Discovery service error: {e}")

    # ================== HEALTH ==================

    async def _health_service(self):
        """Background service for device liveness polling and eviction"""
        poll_interval = self.config['polling']['interval_seconds']

        logger.info(f"Health service started (every {poll_interval} seconds)")

        while self.running:
            try:
                await asyncio.sleep(poll_interval)
                if not self.running:
                    break

                evicted = await self.health.poll_all()
                if evicted:
                    logger.info(f"[HEALTH] Evicted {len(evicted)} device(s): {', '.join(evicted)}")
                self.audio_cache.prune()

            except Exception as e:
                logger.error(f"Health service error: {e}")

    def get_status(self) -> Dict:
        return {
            "running": self.running,
            "discovery": {
                "responses_seen": self.discovery.responses_seen,
                "records_emitted": self.discovery.records_emitted
            },
            "pair_mappings": len(self.pairing.mappings),
            "health": dict(self.health.stats),
            "commands": dict(self.router.stats),
            "audio_buffers": len(self.audio_cache)
        }

    async def _start_api_server(self):
        """Start the FastAPI server"""
        config = uvicorn.Config(
            self.api.app,
            host=self.config['api']['host'],
            port=self.config['api']['port'],
            log_level="info",
            access_log=False  # We handle our own logging
        )

        server = uvicorn.Server(config)

        logger.info(f"Starting API server on {self.config['api']['host']}:{self.config['api']['port']}")
        logger.info(f"API documentation: http://localhost:{self.config['api']['port']}/docs")

        await server.serve()
