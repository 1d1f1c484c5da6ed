"""
Wildcard state-change subscriptions shared by object store implementations
"""

import asyncio
import fnmatch
import logging
from typing import Awaitable, Callable, List, Set, Tuple

from .models import StateRecord

logger = logging.getLogger(__name__)

StateCallback = Callable[[str, StateRecord], Awaitable[None]]


class StateSubscriptions:
    """Dispatches state writes to subscribers whose pattern matches the state id"""

    def __init__(self):
        self._subscribers: List[Tuple[str, StateCallback]] = []
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, pattern: str, callback: StateCallback):
        self._subscribers.append((pattern, callback))
        logger.debug(f"Subscribed to state changes matching {pattern}")

    def notify(self, state: StateRecord):
        for pattern, callback in self._subscribers:
            if fnmatch.fnmatchcase(state.id, pattern):
                task = asyncio.get_running_loop().create_task(self._run(callback, state))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    async def _run(self, callback: StateCallback, state: StateRecord):
        try:
            await callback(state.id, state)
        except Exception as e:
            logger.error(f"State subscriber failed for {state.id}: {e}")

    async def drain(self):
        """Wait for in-flight notifications"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
