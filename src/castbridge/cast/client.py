"""
Cast control client
Async boundary over the pychromecast protocol client. pychromecast runs its
socket and heartbeat in a worker thread; callbacks are marshalled back to the
event loop and blocking calls run on a worker thread owned by each client.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import pychromecast
from pychromecast.config import APP_MEDIA_RECEIVER

from castbridge.discovery.models import Address

logger = logging.getLogger(__name__)

NULL_SESSION_ID = "00000000-0000-0000-0000-000000000000"
STREAM_TYPE_BUFFERED = "BUFFERED"
DEFAULT_RECEIVER_APP_ID = APP_MEDIA_RECEIVER


class CastError(Exception):
    """Base error for cast protocol operations"""


class CastConnectionError(CastError):
    pass


class CastLaunchError(CastError):
    pass


class CastLoadError(CastError):
    pass


@dataclass(frozen=True)
class AppSession:
    """An application currently running on a receiver"""
    app_id: str
    session_id: Optional[str]
    display_name: Optional[str] = None


@dataclass(frozen=True)
class DeviceStatus:
    volume_level: Optional[float]
    app_id: Optional[str] = None


@dataclass(frozen=True)
class MediaDescriptor:
    url: str
    content_type: str
    title: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stream_type: str = STREAM_TYPE_BUFFERED


@dataclass(frozen=True)
class PlayerEvent:
    """Media status update. failed=True marks a load failure reported by the receiver"""
    player_state: Optional[str]
    idle_reason: Optional[str] = None
    failed: bool = False
    media_session_id: Optional[int] = None


class CastControlClient:
    """Remote control protocol used by the session driver, health monitor and volume commands"""

    def __init__(self, address: Address):
        self.address = address

    async def connect(self, timeout: float):
        raise NotImplementedError

    async def get_sessions(self) -> List[AppSession]:
        raise NotImplementedError

    async def get_status(self) -> Optional[DeviceStatus]:
        raise NotImplementedError

    async def join(self, session: AppSession, app_id: str):
        raise NotImplementedError

    async def launch(self, app_id: str):
        raise NotImplementedError

    async def stop(self, session_id: str):
        raise NotImplementedError

    async def set_volume(self, level: float):
        raise NotImplementedError

    async def load(self, media: MediaDescriptor, autoplay: bool = True) -> Optional[int]:
        """Returns the media session id of the loaded item when the receiver reports one"""
        raise NotImplementedError

    def events(self) -> "asyncio.Queue[PlayerEvent]":
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError


ClientFactory = Callable[[Address], CastControlClient]


class _MediaStatusForwarder:
    """pychromecast media status listener that feeds an asyncio queue"""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue):
        self._loop = loop
        self._queue = queue

    def new_media_status(self, status):
        event = PlayerEvent(
            player_state=status.player_state,
            idle_reason=status.idle_reason,
            media_session_id=status.media_session_id,
        )
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def load_media_failed(self, queue_item_id, error_code):
        event = PlayerEvent(player_state=None, idle_reason=f"LOAD_FAILED ({error_code})", failed=True)
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)


class PychromecastClient(CastControlClient):
    """CastControlClient implemented with pychromecast"""

    def __init__(self, address: Address, request_timeout: float = 10.0):
        super().__init__(address)
        self.request_timeout = request_timeout
        self.cast: Optional[pychromecast.Chromecast] = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # A receiver that hangs only ever blocks its own client's thread
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cast-{address.host}")

    async def connect(self, timeout: float):
        self._loop = asyncio.get_running_loop()
        pending = self._loop.run_in_executor(self._executor, partial(self._open, timeout))
        try:
            self.cast = await asyncio.shield(pending)
        except asyncio.CancelledError:
            pending.add_done_callback(_release_abandoned)
            raise
        except Exception as e:
            raise CastConnectionError(f"connect to {self.address} failed: {e}") from e
        if self.cast.status is None:
            raise CastConnectionError(f"no receiver status from {self.address}")
        self.cast.media_controller.register_status_listener(
            _MediaStatusForwarder(self._loop, self._events)
        )

    def _open(self, timeout: float) -> pychromecast.Chromecast:
        host = (self.address.host, self.address.port, None, None, None)
        cast = pychromecast.get_chromecast_from_host(host, tries=1, timeout=timeout)
        try:
            # wait() starts the socket thread, which also runs the heartbeat
            cast.wait(timeout=timeout)
        except Exception:
            cast.disconnect(timeout=0)
            raise
        return cast

    async def get_sessions(self) -> List[AppSession]:
        status = self._require_cast().status
        if status is None or not status.app_id or status.app_id == pychromecast.IDLE_APP_ID:
            return []
        return [AppSession(status.app_id, status.session_id, status.display_name)]

    async def get_status(self) -> Optional[DeviceStatus]:
        status = self._require_cast().status
        if status is None:
            return None
        return DeviceStatus(volume_level=status.volume_level, app_id=status.app_id)

    async def join(self, session: AppSession, app_id: str):
        # launch_app without force is a no-op join when the app already runs
        await self._receiver_request(
            CastLaunchError, partial(self._receiver().launch_app, app_id, force_launch=False)
        )

    async def launch(self, app_id: str):
        await self._receiver_request(
            CastLaunchError, partial(self._receiver().launch_app, app_id, force_launch=True)
        )

    async def stop(self, session_id: str):
        await self._receiver_request(
            CastError,
            partial(self._receiver().send_message, {"type": "STOP", "sessionId": session_id})
        )

    async def set_volume(self, level: float):
        cast = self._require_cast()
        await self._loop.run_in_executor(self._executor, partial(cast.set_volume, level, timeout=self.request_timeout))

    async def load(self, media: MediaDescriptor, autoplay: bool = True) -> Optional[int]:
        controller = self._require_cast().media_controller
        metadata = dict(media.metadata) if media.metadata else None
        response = await self._receiver_request(
            CastLoadError,
            partial(
                controller.play_media,
                media.url,
                media.content_type,
                title=media.title,
                metadata=metadata,
                autoplay=autoplay,
                stream_type=media.stream_type,
            )
        )
        return _media_session_id(response)

    def events(self) -> asyncio.Queue:
        return self._events

    async def close(self):
        cast, self.cast = self.cast, None
        try:
            if cast is not None:
                await asyncio.get_running_loop().run_in_executor(
                    self._executor, partial(cast.disconnect, timeout=self.request_timeout)
                )
        finally:
            self._executor.shutdown(wait=False)

    # ================== HELPERS ==================

    def _require_cast(self) -> pychromecast.Chromecast:
        if self.cast is None:
            raise CastConnectionError(f"not connected to {self.address}")
        return self.cast

    def _receiver(self):
        return self._require_cast().socket_client.receiver_controller

    async def _receiver_request(self, error_type, request: Callable[..., None]):
        """Send a request whose completion is reported through callback_function(ok, response)"""
        future = self._loop.create_future()

        def on_done(ok: bool, response: Optional[dict]):
            self._loop.call_soon_threadsafe(_settle, future, ok, response)

        await self._loop.run_in_executor(self._executor, partial(request, callback_function=on_done))
        try:
            ok, response = await asyncio.wait_for(future, self.request_timeout)
        except asyncio.TimeoutError:
            raise error_type(f"no answer from {self.address} within {self.request_timeout}s")
        if not ok:
            raise error_type(f"request rejected by {self.address}: {response}")
        return response


def _settle(future: asyncio.Future, ok: bool, response: Optional[dict]):
    if not future.done():
        future.set_result((ok, response))


def _release_abandoned(pending: asyncio.Future):
    """Disconnect a receiver whose connect completed after the caller gave up on it"""
    if pending.cancelled() or pending.exception() is not None:
        return
    cast = pending.result()
    logger.debug("[CAST] Dropping a connection that completed after its caller timed out")
    cast.disconnect(timeout=0)


def _media_session_id(response: Optional[dict]) -> Optional[int]:
    statuses = (response or {}).get("status") or []
    if statuses and isinstance(statuses[0], dict):
        return statuses[0].get("mediaSessionId")
    return None


def default_client_factory(request_timeout: float = 10.0) -> ClientFactory:
    return partial(PychromecastClient, request_timeout=request_timeout)
