"""
Stereo pair correlation
Fuses device and group discovery events, in any order, into PairMappings
"""

import logging
from typing import Callable, Dict, List, Optional

from .models import Address, CastRecord, DeviceKind, PairMapping
from .naming import strip_pair_suffix

logger = logging.getLogger(__name__)

MappingListener = Callable[[PairMapping], None]


class PairingResolver:
    """
    Keeps the correlation indexes and the device -> group redirection map.

    Three independent rules create a mapping:
      - a device and a stereo-pair group share a host
      - device and group normalize to the same name
      - the group id minus a literal _Pair/_Paar suffix is the device id
    Every rule is checked from both sides so arrival order never matters.
    All methods are synchronous, so each update is atomic on the event loop.
    """

    def __init__(self):
        self._groups_by_host: Dict[str, CastRecord] = {}
        self._groups_by_name: Dict[str, CastRecord] = {}
        self._groups_by_id: Dict[str, CastRecord] = {}
        self._devices_by_name: Dict[str, str] = {}
        self._devices: Dict[str, CastRecord] = {}
        self._mappings: Dict[str, PairMapping] = {}
        self._listeners: List[MappingListener] = []

    def add_listener(self, listener: MappingListener):
        self._listeners.append(listener)

    # ================== LOOKUPS ==================

    def get_mapping(self, device_id: str) -> Optional[PairMapping]:
        return self._mappings.get(device_id)

    def resolve_address(self, device_id: str, own_address: Address) -> Address:
        """Address commands for device_id must be sent to"""
        mapping = self._mappings.get(device_id)
        return mapping.target_address if mapping else own_address

    @property
    def mappings(self) -> Dict[str, PairMapping]:
        return dict(self._mappings)

    # ================== UPDATES ==================

    def add(self, record: CastRecord):
        if record.kind is DeviceKind.GROUP:
            self._add_group(record)
        else:
            self._add_device(record)

    def _add_device(self, device: CastRecord):
        previous = self._devices.get(device.id)
        if previous is not None and previous.normalized_name != device.normalized_name:
            self._devices_by_name.pop(previous.normalized_name, None)
        self._devices[device.id] = device
        self._devices_by_name[device.normalized_name] = device.id

        group = self._groups_by_host.get(device.address.host)
        if group is not None:
            self._map(device.id, group, "shared address")

        group = self._groups_by_name.get(device.normalized_name)
        if group is not None:
            self._map(device.id, group, "name match")

        for suffix in ('_Pair', '_Paar'):
            group = self._groups_by_id.get(device.id + suffix)
            if group is not None:
                self._map(device.id, group, "id suffix")

    def _add_group(self, group: CastRecord):
        previous = self._groups_by_id.get(group.id)
        if previous is not None:
            self._unindex_group(previous)

        self._groups_by_id[group.id] = group
        self._groups_by_name[group.normalized_name] = group
        if group.is_stereo_pair:
            self._groups_by_host[group.address.host] = group

        # Mappings already pointing at this group follow its new address
        for device_id, mapping in list(self._mappings.items()):
            if mapping.group_name == group.friendly_name and mapping.target_address != group.address:
                self._map(device_id, group, "group moved")

        if group.is_stereo_pair:
            for device in self._devices.values():
                if device.address.host == group.address.host:
                    self._map(device.id, group, "shared address")

        device_id = self._devices_by_name.get(group.normalized_name)
        if device_id is not None:
            self._map(device_id, group, "name match")

        base_id = strip_pair_suffix(group.id)
        if base_id != group.id and base_id in self._devices:
            self._map(base_id, group, "id suffix")

    def _map(self, device_id: str, group: CastRecord, reason: str):
        mapping = PairMapping(device_id, group.address, group.friendly_name)
        if self._mappings.get(device_id) == mapping:
            return
        self._mappings[device_id] = mapping
        logger.info(f"[PAIR] {device_id} -> {group.friendly_name} at {group.address} ({reason})")
        for listener in self._listeners:
            try:
                listener(mapping)
            except Exception as e:
                logger.error(f"[PAIR] Mapping listener failed for {device_id}: {e}")

    def _unindex_group(self, group: CastRecord):
        if self._groups_by_host.get(group.address.host) is group:
            del self._groups_by_host[group.address.host]
        if self._groups_by_name.get(group.normalized_name) is group:
            del self._groups_by_name[group.normalized_name]
        if self._groups_by_id.get(group.id) is group:
            del self._groups_by_id[group.id]

    def forget(self, record_id: str):
        """Drop an evicted device or group from every index"""
        device = self._devices.pop(record_id, None)
        if device is not None and self._devices_by_name.get(device.normalized_name) == record_id:
            del self._devices_by_name[device.normalized_name]
        self._mappings.pop(record_id, None)

        group = self._groups_by_id.get(record_id)
        if group is not None:
            self._unindex_group(group)
            for device_id, mapping in list(self._mappings.items()):
                if mapping.group_name == group.friendly_name:
                    del self._mappings[device_id]
        logger.debug(f"[PAIR] Forgot {record_id}")

    def clear(self):
        self._groups_by_host.clear()
        self._groups_by_name.clear()
        self._groups_by_id.clear()
        self._devices_by_name.clear()
        self._devices.clear()
        self._mappings.clear()
