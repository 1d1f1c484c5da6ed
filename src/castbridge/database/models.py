"""
Object store records
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ObjectRecord:
    """Hierarchical object: a device, a channel or a writable state definition"""
    id: str
    type: str  # "device", "channel", "state"
    common: Dict[str, Any] = field(default_factory=dict)
    native: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StateRecord:
    """Current value of a state. ack=False marks a command still to be handled"""
    id: str
    val: Any
    ack: bool = True
    ts: Optional[datetime] = None
