"""
Discovery module for Google Cast receivers and stereo pair correlation
"""

from .listener import DiscoveryListener, parse_service_info
from .models import Address, CastRecord, DeviceKind, DeviceRecord, PairMapping
from .naming import sanitize_id, normalize_name
from .pairing import PairingResolver

__all__ = [
    'DiscoveryListener', 'parse_service_info', 'Address', 'CastRecord', 'DeviceKind',
    'DeviceRecord', 'PairMapping', 'sanitize_id', 'normalize_name', 'PairingResolver',
]
