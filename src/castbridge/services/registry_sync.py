"""
Registry sync - persists discovered cast endpoints and their control points
"""

import logging
from typing import Dict, List, Optional, Tuple

from castbridge.database.models import ObjectRecord
from castbridge.discovery.models import Address, CastRecord, DeviceKind, DeviceRecord, PairMapping

logger = logging.getLogger(__name__)

CONTROL_BROADCAST = "broadcast"
CONTROL_VOLUME = "volume"
CONTROL_YOUTUBE = "youtube_url"
BROADCAST_ALL = "broadcast_all"
LAST_ERROR = "info.last_error"

CONTROL_POINTS = {
    CONTROL_BROADCAST: {"name": "Text to speak", "type": "string", "role": "text", "read": True, "write": True},
    CONTROL_VOLUME: {"name": "Volume", "type": "number", "role": "level.volume", "min": 0, "max": 100,
                     "unit": "%", "read": True, "write": True},
    CONTROL_YOUTUBE: {"name": "YouTube URL to play", "type": "string", "role": "url", "read": True, "write": True},
}


class RegistrySync:
    """Idempotent upsert of device records into the object store"""

    def __init__(self, store, namespace: str = "castbridge.0"):
        self.store = store
        self.namespace = namespace
        self.devices_prefix = f"{namespace}.devices."

    # ================== IDS ==================

    def device_object_id(self, device_id: str) -> str:
        return f"{self.devices_prefix}{device_id}"

    def control_state_id(self, device_id: str, control: str) -> str:
        return f"{self.devices_prefix}{device_id}.{control}"

    @property
    def broadcast_all_id(self) -> str:
        return f"{self.namespace}.{BROADCAST_ALL}"

    @property
    def last_error_id(self) -> str:
        return f"{self.namespace}.{LAST_ERROR}"

    def parse_control_point(self, state_id: str) -> Optional[Tuple[Optional[str], str]]:
        """Map a state id back to (device_id, control). Instance-wide controls have no device id"""
        if state_id == self.broadcast_all_id:
            return None, BROADCAST_ALL
        if not state_id.startswith(self.devices_prefix):
            return None
        device_id, _, control = state_id[len(self.devices_prefix):].rpartition('.')
        if not device_id or control not in CONTROL_POINTS:
            return None
        return device_id, control

    # ================== SETUP ==================

    async def ensure_instance_objects(self):
        await self.store.set_object_not_exists(ObjectRecord(
            id=self.broadcast_all_id, type="state",
            common={"name": "Text to speak on every device", "type": "string", "role": "text",
                    "read": True, "write": True}
        ))
        await self.store.set_object_not_exists(ObjectRecord(
            id=self.last_error_id, type="state",
            common={"name": "Last delivery error", "type": "string", "role": "text",
                    "read": True, "write": False}
        ))

    async def upsert_device(self, record: CastRecord) -> DeviceRecord:
        """Create on first sight, refresh address and model on every later sight"""
        object_id = self.device_object_id(record.id)
        native = {
            "friendly_name": record.friendly_name,
            "kind": record.kind.value,
            "host": record.address.host,
            "port": record.address.port,
            "model": record.model,
        }
        created = await self.store.set_object_not_exists(ObjectRecord(
            id=object_id, type="device",
            common={"name": record.friendly_name},
            native=dict(native, available=True, unavailable_since=None, pair_group=None)
        ))
        if created:
            logger.info(f"[REGISTRY] New {record.kind.value}: {record.friendly_name} ({record.address})")
        else:
            await self.store.extend_object(object_id, native=native)
            logger.debug(f"[REGISTRY] Refreshed {record.id} at {record.address}")

        await self.ensure_control_points(record.id)
        return await self.get_device(record.id)

    async def ensure_control_points(self, device_id: str):
        for control, common in CONTROL_POINTS.items():
            await self.store.set_object_not_exists(ObjectRecord(
                id=self.control_state_id(device_id, control), type="state", common=dict(common)
            ))

    async def tag_pair(self, mapping: PairMapping):
        """Informational only, redirection uses the in-memory pairing map"""
        updated = await self.store.extend_object(
            self.device_object_id(mapping.source_device_id),
            native={"pair_group": mapping.group_name}
        )
        if updated:
            logger.debug(f"[REGISTRY] Tagged {mapping.source_device_id} as member of {mapping.group_name}")

    # ================== READS ==================

    async def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        obj = await self.store.get_object(self.device_object_id(device_id))
        return self._to_device(obj) if obj else None

    async def get_devices(self) -> List[DeviceRecord]:
        objects = await self.store.get_objects(self.devices_prefix, "device")
        return [self._to_device(obj) for obj in objects]

    def _to_device(self, obj: ObjectRecord) -> DeviceRecord:
        native = obj.native
        return DeviceRecord(
            id=obj.id[len(self.devices_prefix):],
            friendly_name=native.get("friendly_name", ""),
            kind=DeviceKind(native.get("kind", DeviceKind.DEVICE.value)),
            address=Address(native["host"], int(native["port"])),
            model=native.get("model", ""),
            available=bool(native.get("available", True)),
            unavailable_since=native.get("unavailable_since"),
            pair_group=native.get("pair_group"),
        )

    # ================== HEALTH ==================

    async def mark_available(self, device_id: str, volume_level: Optional[float] = None):
        await self.store.extend_object(
            self.device_object_id(device_id),
            native={"available": True, "unavailable_since": None}
        )
        if volume_level is not None:
            await self.store.set_state(
                self.control_state_id(device_id, CONTROL_VOLUME), round(volume_level * 100), ack=True
            )

    async def mark_unavailable(self, device_id: str, since: float):
        await self.store.extend_object(
            self.device_object_id(device_id),
            native={"available": False, "unavailable_since": since}
        )

    async def delete_device(self, device_id: str):
        await self.store.del_object_subtree(self.device_object_id(device_id))
        logger.info(f"[REGISTRY] Removed {device_id} and its control points")

    # ================== COMMAND FEEDBACK ==================

    async def acknowledge(self, state_id: str, value):
        await self.store.set_state(state_id, value, ack=True)

    async def set_last_error(self, device_id: str, stage: str, message: str):
        await self.store.set_state(self.last_error_id, f"{device_id} [{stage}]: {message}", ack=True)

    async def get_last_error(self) -> Optional[str]:
        state = await self.store.get_state(self.last_error_id)
        return state.val if state else None

    def device_summary(self, device: DeviceRecord) -> Dict:
        return {
            "id": device.id,
            "friendly_name": device.friendly_name,
            "kind": device.kind.value,
            "host": device.address.host,
            "port": device.address.port,
            "model": device.model,
            "available": device.available,
            "unavailable_since": device.unavailable_since,
            "pair_group": device.pair_group,
        }
