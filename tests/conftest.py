"""Shared fixtures: in-memory object store, scripted cast receivers and a manual clock."""

import asyncio
import copy
import fnmatch
from typing import Dict, List, Optional

import pytest

from castbridge.cast.client import AppSession, CastConnectionError, CastControlClient, CastLaunchError
from castbridge.cast.client import DeviceStatus, MediaDescriptor, PlayerEvent
from castbridge.config_loader import _apply_defaults
from castbridge.database.models import ObjectRecord, StateRecord
from castbridge.database.subscriptions import StateSubscriptions
from castbridge.discovery.models import Address, CastRecord


class MemoryStore:
    """Object store with the DatabaseManager interface, kept in dicts."""

    def __init__(self):
        self.objects: Dict[str, ObjectRecord] = {}
        self.states: Dict[str, StateRecord] = {}
        self.subscriptions = StateSubscriptions()

    async def initialize(self):
        pass

    async def close(self):
        await self.subscriptions.drain()

    async def set_object_not_exists(self, obj: ObjectRecord) -> bool:
        if obj.id in self.objects:
            return False
        self.objects[obj.id] = copy.deepcopy(obj)
        return True

    async def extend_object(self, object_id, common=None, native=None) -> bool:
        obj = self.objects.get(object_id)
        if obj is None:
            return False
        obj.common.update(common or {})
        obj.native.update(native or {})
        return True

    async def get_object(self, object_id) -> Optional[ObjectRecord]:
        obj = self.objects.get(object_id)
        return copy.deepcopy(obj) if obj else None

    async def get_objects(self, prefix, object_type=None) -> List[ObjectRecord]:
        return [
            copy.deepcopy(obj) for key, obj in sorted(self.objects.items())
            if key.startswith(prefix) and (object_type is None or obj.type == object_type)
        ]

    async def del_object_subtree(self, object_id) -> int:
        doomed = [key for key in self.objects if key == object_id or key.startswith(object_id + ".")]
        for key in doomed:
            del self.objects[key]
        for key in [key for key in self.states if key == object_id or key.startswith(object_id + ".")]:
            del self.states[key]
        return len(doomed)

    async def set_state(self, state_id, value, ack=True) -> StateRecord:
        state = StateRecord(id=state_id, val=value, ack=ack)
        self.states[state_id] = state
        self.subscriptions.notify(state)
        return state

    async def get_state(self, state_id) -> Optional[StateRecord]:
        return self.states.get(state_id)

    def subscribe_states(self, pattern, callback):
        self.subscriptions.subscribe(pattern, callback)

    def matching_states(self, pattern):
        return {key: state for key, state in self.states.items() if fnmatch.fnmatchcase(key, pattern)}


class FakeReceiver:
    """Scripted behaviour of one cast receiver plus a log of the calls it saw."""

    def __init__(self):
        self.sessions: List[AppSession] = []
        self.volume_level: Optional[float] = 0.5
        self.connect_error = False
        self.connect_delay = 0.0
        self.status_missing = False
        self.launch_failures = 0
        self.load_error = False
        self.playback = [PlayerEvent("BUFFERING"), PlayerEvent("PLAYING"), PlayerEvent("IDLE", "FINISHED")]
        # Statuses a receiver pushes as soon as a connection comes up
        self.status_on_connect: List[PlayerEvent] = []
        self.media_session_id: Optional[int] = None
        self.calls: List[tuple] = []

    def names(self):
        return [call[0] for call in self.calls]


class FakeCastClient(CastControlClient):

    def __init__(self, address: Address, receiver: FakeReceiver):
        super().__init__(address)
        self.receiver = receiver
        self._events: asyncio.Queue = asyncio.Queue()

    async def connect(self, timeout):
        self.receiver.calls.append(("connect", self.address))
        if self.receiver.connect_delay:
            await asyncio.sleep(self.receiver.connect_delay)
        if self.receiver.connect_error:
            raise CastConnectionError(f"connection refused by {self.address}")
        for event in self.receiver.status_on_connect:
            self._events.put_nowait(event)

    async def get_sessions(self):
        return list(self.receiver.sessions)

    async def get_status(self):
        if self.receiver.status_missing:
            return None
        return DeviceStatus(volume_level=self.receiver.volume_level)

    async def join(self, session, app_id):
        self.receiver.calls.append(("join", session.session_id))

    async def launch(self, app_id):
        self.receiver.calls.append(("launch", app_id))
        if self.receiver.launch_failures > 0:
            self.receiver.launch_failures -= 1
            raise CastLaunchError("LAUNCH_ERROR")
        self.receiver.sessions = [AppSession(app_id, "new-session")]

    async def stop(self, session_id):
        self.receiver.calls.append(("stop", session_id))
        self.receiver.sessions = []

    async def set_volume(self, level):
        self.receiver.calls.append(("set_volume", level))
        self.receiver.volume_level = level

    async def load(self, media: MediaDescriptor, autoplay=True):
        self.receiver.calls.append(("load", media))
        if self.receiver.load_error:
            self._events.put_nowait(PlayerEvent(None, "LOAD_FAILED (104)", failed=True))
            return None
        for event in self.receiver.playback:
            self._events.put_nowait(event)
        return self.receiver.media_session_id

    def events(self):
        return self._events

    async def close(self):
        self.receiver.calls.append(("close", self.address))


class FakeCastNetwork:
    """Client factory handing out FakeCastClients bound to per-host receivers."""

    def __init__(self):
        self.receivers: Dict[str, FakeReceiver] = {}
        self.clients: List[FakeCastClient] = []

    def receiver(self, host) -> FakeReceiver:
        return self.receivers.setdefault(host, FakeReceiver())

    def __call__(self, address: Address) -> FakeCastClient:
        client = FakeCastClient(address, self.receiver(address.host))
        self.clients.append(client)
        return client


class ManualClock:

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def cast_record(name, host, model="Google Home", port=8009) -> CastRecord:
    return CastRecord(friendly_name=name, model=model, address=Address(host, port))


@pytest.fixture
def config():
    cfg = _apply_defaults({
        'database': {'host': 'localhost', 'port': 5432, 'database': 'test',
                     'username': 'test', 'password': 'test'},
        'discovery': {},
    })
    cfg['cast'].update({
        'stop_settle_ms': 0,
        'launch_retry_backoff_ms': 0,
        'load_settle_ms': 0,
        'session_ceiling_seconds': 2,
    })
    cfg['api']['advertise_host'] = '10.0.0.2'
    cfg['logging']['file'] = None
    return cfg


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def network():
    return FakeCastNetwork()


@pytest.fixture
def clock():
    return ManualClock()
