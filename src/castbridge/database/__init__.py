"""
Database module for device objects and control point states
"""

from .manager import DatabaseManager
from .models import ObjectRecord, StateRecord
from .subscriptions import StateSubscriptions

__all__ = ['DatabaseManager', 'ObjectRecord', 'StateRecord', 'StateSubscriptions']
