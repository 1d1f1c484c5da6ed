"""
Server services: registry sync, health monitoring, command routing and orchestration
"""

from .registry_sync import RegistrySync
from .health_monitor import HealthMonitor
from .command_router import CommandDebouncer, CommandRouter

__all__ = ['RegistrySync', 'HealthMonitor', 'CommandDebouncer', 'CommandRouter']
