"""
mDNS discovery listener for Google Cast receivers
Browses the cast service type with zeroconf and turns resolved service info into CastRecords
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from zeroconf import InterfaceChoice, IPVersion, ServiceInfo, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from .models import Address, CastRecord, CAST_SERVICE_TYPE, DEFAULT_CAST_PORT

logger = logging.getLogger(__name__)

RecordHandler = Callable[[CastRecord], None]

RESOLVE_TIMEOUT_MS = 3000


def parse_service_info(info: ServiceInfo) -> Optional[CastRecord]:
    """
    Build a CastRecord from resolved service info.
    Services without a friendly name or an IPv4 address are not actionable.
    """
    properties = {key.lower(): value for key, value in info.decoded_properties.items()}
    friendly_name = (properties.get('fn') or '').strip()
    if not friendly_name:
        return None

    addresses = info.parsed_addresses(IPVersion.V4Only)
    if not addresses:
        return None

    return CastRecord(
        friendly_name=friendly_name,
        model=properties.get('md') or '',
        address=Address(addresses[0], info.port or DEFAULT_CAST_PORT),
    )


class DiscoveryListener:
    """Browses for cast receivers and emits parsed records to registered handlers"""

    def __init__(self, config: Dict):
        self.config = config
        self.interfaces = config.get('interfaces') or []
        self.resolve_timeout_ms = config.get('resolve_timeout_ms', RESOLVE_TIMEOUT_MS)
        self.aiozc: Optional[AsyncZeroconf] = None
        self.browser: Optional[AsyncServiceBrowser] = None
        self._handlers: List[RecordHandler] = []
        self._tasks: Set[asyncio.Task] = set()
        self.responses_seen = 0
        self.records_emitted = 0

    def add_handler(self, handler: RecordHandler):
        self._handlers.append(handler)

    async def start(self):
        interfaces = self.interfaces if self.interfaces else InterfaceChoice.All
        self.aiozc = AsyncZeroconf(interfaces=interfaces)
        self._start_browser()
        logger.info(f"[DISCOVERY] Browsing {CAST_SERVICE_TYPE} on {self.interfaces or 'all interfaces'}")

    async def stop(self):
        await self._cancel_browser()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self.aiozc:
            await self.aiozc.async_close()
            self.aiozc = None
        logger.info("[DISCOVERY] Listener stopped")

    async def scan(self):
        """Restart the browser so the PTR query goes out again right away"""
        if not self.aiozc:
            logger.warning("[DISCOVERY] Scan requested before listener start")
            return
        await self._cancel_browser()
        self._start_browser()
        logger.debug("[DISCOVERY] Query sent")

    def _start_browser(self):
        self.browser = AsyncServiceBrowser(
            self.aiozc.zeroconf, CAST_SERVICE_TYPE, handlers=[self._on_service_state_change]
        )

    async def _cancel_browser(self):
        if self.browser is not None:
            browser, self.browser = self.browser, None
            await browser.async_cancel()

    # ================== ZEROCONF CALLBACKS ==================

    def _on_service_state_change(self, zeroconf: Zeroconf, service_type: str, name: str,
                                 state_change: ServiceStateChange) -> None:
        # Removal is left to the health monitor; receivers drop off mDNS during reboots
        if state_change is ServiceStateChange.Removed:
            logger.debug(f"[DISCOVERY] {name} withdrawn")
            return
        task = asyncio.get_running_loop().create_task(self._resolve(zeroconf, service_type, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resolve(self, zeroconf: Zeroconf, service_type: str, name: str) -> Optional[CastRecord]:
        info = AsyncServiceInfo(service_type, name)
        try:
            if not info.load_from_cache(zeroconf):
                await info.async_request(zeroconf, self.resolve_timeout_ms)
        except Exception as e:
            logger.warning(f"[DISCOVERY] Resolving {name} failed: {e}")
            return None
        return self.on_service_info(info)

    def on_service_info(self, info: ServiceInfo) -> Optional[CastRecord]:
        """Parse resolved service info and hand the record to every handler"""
        self.responses_seen += 1
        record = parse_service_info(info)
        if record is None:
            logger.debug(f"[DISCOVERY] Ignoring unresolved service {info.name}")
            return None

        self.records_emitted += 1
        logger.debug(f"[DISCOVERY] {record.friendly_name} ({record.model}) at {record.address} as {record.kind.value}")
        for handler in self._handlers:
            try:
                handler(record)
            except Exception as e:
                logger.error(f"[DISCOVERY] Handler failed for {record.friendly_name}: {e}")
        return record
