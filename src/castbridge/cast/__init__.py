"""
Cast protocol client and session driver
"""

from .client import (
    AppSession,
    CastConnectionError,
    CastControlClient,
    CastError,
    CastLaunchError,
    CastLoadError,
    DeviceStatus,
    MediaDescriptor,
    PlayerEvent,
    PychromecastClient,
    default_client_factory,
)
from .session import CastSessionDriver, DeliveryResult

__all__ = [
    'AppSession', 'CastConnectionError', 'CastControlClient', 'CastError', 'CastLaunchError',
    'CastLoadError', 'DeviceStatus', 'MediaDescriptor', 'PlayerEvent', 'PychromecastClient',
    'default_client_factory', 'CastSessionDriver', 'DeliveryResult',
]
