"""
Discovery data structures and models
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .naming import sanitize_id, normalize_name, has_pair_token

CAST_SERVICE_TYPE = "_googlecast._tcp.local."
DEFAULT_CAST_PORT = 8009
GROUP_MODEL = "Google Cast Group"


class DeviceKind(Enum):
    """Physical speaker or virtual multi-speaker endpoint"""
    DEVICE = "device"
    GROUP = "group"


@dataclass(frozen=True)
class Address:
    host: str
    port: int = DEFAULT_CAST_PORT

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class CastRecord:
    """Normalized result of one discovery response"""
    friendly_name: str
    model: str
    address: Address

    @property
    def id(self) -> str:
        return sanitize_id(self.friendly_name)

    @property
    def normalized_name(self) -> str:
        return normalize_name(self.friendly_name)

    @property
    def is_stereo_pair(self) -> bool:
        return has_pair_token(self.friendly_name)

    @property
    def kind(self) -> DeviceKind:
        # Some firmware advertises stereo pairs with a generic model, so the
        # name token counts as a group marker too
        if self.model == GROUP_MODEL or self.is_stereo_pair:
            return DeviceKind.GROUP
        return DeviceKind.DEVICE


@dataclass
class DeviceRecord:
    """Persisted view of a cast endpoint"""
    id: str
    friendly_name: str
    kind: DeviceKind
    address: Address
    model: str
    available: bool = True
    unavailable_since: Optional[float] = None
    pair_group: Optional[str] = None


@dataclass(frozen=True)
class PairMapping:
    """Redirects commands for a device to its stereo group endpoint"""
    source_device_id: str
    target_address: Address
    group_name: str
