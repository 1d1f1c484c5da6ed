"""
Command router - turns control point writes and API calls into cast deliveries
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Union

from castbridge.cast.client import ClientFactory
from castbridge.cast.session import CastSessionDriver, DeliveryResult
from castbridge.database.models import StateRecord
from castbridge.discovery.models import Address, DeviceKind, DeviceRecord
from castbridge.discovery.pairing import PairingResolver
from castbridge.http_helper import get_local_ip
from castbridge.media.audio_cache import AudioBufferCache
from castbridge.media.tts import SpeechSynthesizer, SynthesisError
from castbridge.media.youtube import MediaResolutionError, MediaResolver, YOUTUBE_MIME_TYPE
from .registry_sync import (
    BROADCAST_ALL,
    CONTROL_BROADCAST,
    CONTROL_VOLUME,
    CONTROL_YOUTUBE,
    RegistrySync,
)

logger = logging.getLogger(__name__)

ALL_DEVICES = "all"


class CommandDebouncer:
    """Drops repeats of the same key inside the window; the first write wins"""

    def __init__(self, window_seconds: float = 2, clock: Callable[[], float] = time.monotonic):
        self.window = window_seconds
        self.clock = clock
        self._last_accepted: Dict[str, float] = {}

    def accept(self, key: str) -> bool:
        now = self.clock()
        self._prune(now)
        last = self._last_accepted.get(key)
        if last is not None and now - last < self.window:
            return False
        self._last_accepted[key] = now
        return True

    def _prune(self, now: float):
        stale = [key for key, ts in self._last_accepted.items() if now - ts >= self.window]
        for key in stale:
            del self._last_accepted[key]

    def __len__(self) -> int:
        return len(self._last_accepted)


class CommandRouter:
    """Validates, debounces and dispatches user commands; failures never escape"""

    def __init__(self, registry: RegistrySync, pairing: PairingResolver, driver: CastSessionDriver,
                 synthesizer: SpeechSynthesizer, resolver: MediaResolver, audio_cache: AudioBufferCache,
                 client_factory: ClientFactory, config: Dict,
                 clock: Callable[[], float] = time.monotonic):
        self.registry = registry
        self.pairing = pairing
        self.driver = driver
        self.synthesizer = synthesizer
        self.resolver = resolver
        self.audio_cache = audio_cache
        self.client_factory = client_factory
        self.config = config

        self.debouncer = CommandDebouncer(config['commands'].get('debounce_seconds', 2), clock)
        self.language = config['tts'].get('language', 'en')
        self.voice = config['tts'].get('voice')
        self.connect_timeout = config['cast'].get('connect_timeout_seconds', 10)
        self.api_port = config['api'].get('port', 8000)
        self.advertise_host = config['api'].get('advertise_host')

        self.stats = {
            'commands': 0,
            'debounced': 0,
            'deliveries': 0,
            'failures': 0,
        }

    # ================== CONTROL POINTS ==================

    async def handle_state_change(self, state_id: str, state: StateRecord):
        """
        Store subscription callback. Only unacknowledged writes are commands.
        The write is acknowledged before delivery starts; outcomes land in info.last_error.
        """
        if state.ack:
            return
        parsed = self.registry.parse_control_point(state_id)
        if parsed is None:
            return
        device_id, control = parsed
        target = device_id or ALL_DEVICES

        await self._acknowledge(state_id, control, state.val)
        if state.val is None or state.val == "":
            logger.debug(f"[COMMAND] Ignoring empty {control} write for {target}")
            return
        if not self.debouncer.accept(target):
            self.stats['debounced'] += 1
            logger.debug(f"[COMMAND] Dropped {control} for {target}, another command was accepted moments ago")
            return

        try:
            await self._dispatch(device_id, control, state.val)
        except Exception as e:
            await self._record_failure(target, control, str(e))

    async def _dispatch(self, device_id: Optional[str], control: str, value):
        self.stats['commands'] += 1

        if control == BROADCAST_ALL:
            await self.broadcast_all(str(value))
        elif control == CONTROL_BROADCAST:
            await self.broadcast_text(device_id, str(value))
        elif control == CONTROL_YOUTUBE:
            await self.play_youtube(device_id, str(value))
        elif control == CONTROL_VOLUME:
            await self.set_volume(device_id, float(value))

    async def _acknowledge(self, state_id: str, control: str, value):
        # Volume keeps its level, text and URL controls are cleared once handled
        ack_value = value if control == CONTROL_VOLUME else ""
        try:
            await self.registry.acknowledge(state_id, ack_value)
        except Exception as e:
            logger.error(f"[COMMAND] Could not acknowledge {state_id}: {e}")

    # ================== COMMANDS ==================

    async def broadcast_text(self, device_id: str, text: str, language: Optional[str] = None,
                             voice: Optional[str] = None) -> DeliveryResult:
        device = await self.registry.get_device(device_id)
        if device is None:
            return await self._fail(device_id, "lookup", "unknown device")

        try:
            audio = await self.synthesizer.synthesize(text, language or self.language, voice or self.voice)
        except SynthesisError as e:
            return await self._fail(device_id, "synthesis", str(e))

        address = self.resolve_address(device)
        url = self._publish_audio(device.id, audio, address.host)
        logger.info(f"[COMMAND] Speaking {len(text)} chars on {device.id} via {address}")
        return await self._deliver(device.id, address, url, "audio/mpeg", {"title": text[:100]})

    async def play_youtube(self, device_id: str, ref: str) -> DeliveryResult:
        device = await self.registry.get_device(device_id)
        if device is None:
            return await self._fail(device_id, "lookup", "unknown device")
        if not self.resolver.validate(ref):
            return await self._fail(device_id, "validate", f"not a YouTube reference: {ref}")

        try:
            media = await self.resolver.resolve(ref)
        except MediaResolutionError as e:
            return await self._fail(device_id, "resolve", str(e))

        address = self.resolve_address(device)
        metadata = {"metadataType": 3, "title": media.title, "artist": media.author}
        logger.info(f"[COMMAND] Playing '{media.title}' on {device.id} via {address}")
        return await self._deliver(device.id, address, media.stream_url, YOUTUBE_MIME_TYPE, metadata)

    async def set_volume(self, device_id: str, level: float) -> bool:
        """Direct volume change on a short-lived connection, no receiver app involved"""
        device = await self.registry.get_device(device_id)
        if device is None:
            await self._fail(device_id, "lookup", "unknown device")
            return False

        level = max(0.0, min(100.0, level))
        address = self.resolve_address(device)
        client = self.client_factory(address)
        try:
            await client.connect(self.connect_timeout)
            await client.set_volume(level / 100)
            logger.info(f"[COMMAND] Volume of {device.id} set to {level:.0f}% via {address}")
            return True
        except Exception as e:
            await self._fail(device.id, CONTROL_VOLUME, str(e))
            return False
        finally:
            try:
                await client.close()
            except Exception as e:
                logger.debug(f"[COMMAND] Closing volume connection to {device.id} failed: {e}")

    async def broadcast_all(self, text: str, language: Optional[str] = None,
                            voice: Optional[str] = None) -> Dict[str, Union[DeliveryResult, Exception]]:
        """
        Speak text on every available speaker; one delivery per effective address.
        Multi-room groups are skipped since their members are addressed directly,
        stereo pair groups stay in as the target their members resolve to.
        """
        pair_targets = {mapping.target_address for mapping in self.pairing.mappings.values()}
        devices = [
            d for d in await self.registry.get_devices()
            if d.available and (d.kind is DeviceKind.DEVICE or d.address in pair_targets)
        ]
        if not devices:
            logger.warning("[COMMAND] Broadcast to all skipped, no available devices")
            return {}

        try:
            audio = await self.synthesizer.synthesize(text, language or self.language, voice or self.voice)
        except SynthesisError as e:
            await self._fail(ALL_DEVICES, "synthesis", str(e))
            return {}

        targets = self._targets_by_address(devices)
        logger.info(f"[COMMAND] Broadcasting to {len(targets)} receiver(s) for {len(devices)} device(s)")

        jobs = []
        for address, device in targets.items():
            url = self._publish_audio(device.id, audio, address.host)
            jobs.append(self._deliver(device.id, address, url, "audio/mpeg", {"title": text[:100]}))
        results = await asyncio.gather(*jobs, return_exceptions=True)

        outcome: Dict[str, Union[DeliveryResult, Exception]] = {}
        for device, result in zip(targets.values(), results):
            if isinstance(result, Exception):
                await self._record_failure(device.id, "broadcast", str(result))
            outcome[device.id] = result
        return outcome

    # ================== HELPERS ==================

    def resolve_address(self, device: DeviceRecord) -> Address:
        return self.pairing.resolve_address(device.id, device.address)

    def _targets_by_address(self, devices: List[DeviceRecord]) -> Dict[Address, DeviceRecord]:
        targets: Dict[Address, DeviceRecord] = {}
        for device in sorted(devices, key=lambda d: d.id):
            targets.setdefault(self.resolve_address(device), device)
        return targets

    def media_base_url(self, peer_host: Optional[str] = None) -> str:
        host = self.advertise_host or get_local_ip(peer_host) or "127.0.0.1"
        return f"http://{host}:{self.api_port}"

    def _publish_audio(self, device_id: str, audio: bytes, peer_host: str) -> str:
        self.audio_cache.put(device_id, audio)
        return f"{self.media_base_url(peer_host)}/audio/{device_id}.mp3?t={int(time.time() * 1000)}"

    async def _deliver(self, device_id: str, address: Address, url: str, mime_type: str,
                       metadata: Dict) -> DeliveryResult:
        self.stats['deliveries'] += 1
        result = await self.driver.deliver(address, url, mime_type, metadata, device_id=device_id)
        if not result.success:
            await self._record_failure(device_id, result.stage, result.error or "delivery failed")
        return result

    async def _fail(self, device_id: str, stage: str, message: str) -> DeliveryResult:
        await self._record_failure(device_id, stage, message)
        return DeliveryResult(False, stage, message)

    async def _record_failure(self, device_id: str, stage: str, message: str):
        self.stats['failures'] += 1
        logger.error(f"[COMMAND] {device_id} failed at {stage}: {message}")
        try:
            await self.registry.set_last_error(device_id, stage, message)
        except Exception as e:
            logger.error(f"[COMMAND] Could not record last error for {device_id}: {e}")
