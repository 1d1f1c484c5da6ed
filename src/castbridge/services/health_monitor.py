"""
Health monitor - probes every known receiver, tracks availability and evicts
devices that stay unresponsive beyond the configured window
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from castbridge.cast.client import ClientFactory
from castbridge.discovery.models import DeviceRecord
from castbridge.discovery.pairing import PairingResolver
from .registry_sync import RegistrySync

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Best-effort liveness tracking; never raises to its caller"""

    def __init__(self, registry: RegistrySync, pairing: PairingResolver, client_factory: ClientFactory,
                 config: Dict, clock: Callable[[], float] = time.time):
        self.registry = registry
        self.pairing = pairing
        self.client_factory = client_factory
        self.clock = clock
        self.probe_timeout = config['polling'].get('probe_timeout_seconds', 5)
        self.eviction_threshold = config['monitoring'].get('eviction_threshold_hours', 24) * 3600

        self.stats = {
            'polls': 0,
            'probe_failures': 0,
            'evictions': 0,
        }

    async def poll_all(self) -> List[str]:
        """Probe every stored device concurrently. Returns the ids evicted in this round"""
        try:
            devices = await self.registry.get_devices()
        except Exception as e:
            logger.error(f"[HEALTH] Could not load devices: {e}")
            return []

        self.stats['polls'] += 1
        results = await asyncio.gather(*(self.check_device(device) for device in devices),
                                       return_exceptions=True)

        evicted = []
        for device, result in zip(devices, results):
            if isinstance(result, Exception):
                logger.error(f"[HEALTH] Check for {device.id} failed: {result}")
            elif result:
                evicted.append(device.id)
        return evicted

    async def check_device(self, device: DeviceRecord) -> bool:
        """Probe one device and apply the state transition. Returns True when evicted"""
        ok, volume = await self.probe(device)
        now = self.clock()

        if ok:
            if not device.available:
                logger.info(f"[HEALTH] {device.id} is reachable again")
            await self.registry.mark_available(device.id, volume)
            return False

        self.stats['probe_failures'] += 1
        since = device.unavailable_since if device.unavailable_since is not None else now
        if device.available:
            logger.warning(f"[HEALTH] {device.id} ({device.address}) stopped responding")
        await self.registry.mark_unavailable(device.id, since)

        if self.eviction_threshold > 0 and now - since > self.eviction_threshold:
            await self.evict(device, now - since)
            return True
        return False

    async def probe(self, device: DeviceRecord) -> Tuple[bool, Optional[float]]:
        """Short-lived status connection. Any failure, including timeout, counts as unavailable"""
        client = self.client_factory(device.address)

        async def status_round_trip():
            await client.connect(self.probe_timeout)
            return await client.get_status()

        try:
            status = await asyncio.wait_for(status_round_trip(), self.probe_timeout)
            if status is None:
                logger.debug(f"[HEALTH] {device.id} answered without a status")
                return False, None
            return True, status.volume_level
        except Exception as e:
            logger.debug(f"[HEALTH] Probe of {device.id} at {device.address} failed: {e}")
            return False, None
        finally:
            try:
                await client.close()
            except Exception as e:
                logger.debug(f"[HEALTH] Closing probe connection to {device.id} failed: {e}")

    async def evict(self, device: DeviceRecord, unavailable_for: float):
        logger.warning(f"[HEALTH] Evicting {device.id}: unavailable for {unavailable_for / 3600:.1f}h")
        await self.registry.delete_device(device.id)
        self.pairing.forget(device.id)
        self.stats['evictions'] += 1
