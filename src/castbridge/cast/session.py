"""
Cast session driver
Connects to a receiver, joins or launches the receiver app, loads media and
keeps the session open until playback reaches a terminal state.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from castbridge.discovery.models import Address
from .client import (
    AppSession,
    CastControlClient,
    CastError,
    CastLaunchError,
    ClientFactory,
    DEFAULT_RECEIVER_APP_ID,
    MediaDescriptor,
    NULL_SESSION_ID,
)

logger = logging.getLogger(__name__)

# Delivery stages reported in DeliveryResult.stage
STAGE_CONNECT = "connect"
STAGE_SESSION = "session"
STAGE_LAUNCH = "launch"
STAGE_LOAD = "load"
STAGE_PLAYBACK = "playback"
STAGE_DONE = "done"


@dataclass
class DeliveryResult:
    success: bool
    stage: str
    error: Optional[str] = None


class CastSessionDriver:
    """Runs one cast session per delivery; sessions are never shared between commands"""

    def __init__(self, client_factory: ClientFactory, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.client_factory = client_factory
        self.app_id = config.get('app_id', DEFAULT_RECEIVER_APP_ID)
        self.connect_timeout = config.get('connect_timeout_seconds', 10)
        self.stop_settle = config.get('stop_settle_ms', 500) / 1000
        self.launch_retry_backoff = config.get('launch_retry_backoff_ms', 750) / 1000
        self.load_settle = config.get('load_settle_ms', 550) / 1000
        self.session_ceiling = config.get('session_ceiling_seconds', 120)

    async def deliver(self, address: Address, media_url: str, mime_type: str,
                      metadata: Optional[Dict[str, Any]] = None,
                      device_id: Optional[str] = None) -> DeliveryResult:
        """Play media_url on the receiver at address and wait for playback to end"""
        label = device_id or str(address)
        metadata = dict(metadata or {})
        client = self.client_factory(address)
        stage = STAGE_CONNECT
        try:
            await client.connect(self.connect_timeout)
            logger.debug(f"[CAST] Connected to {label} at {address}")

            stage = STAGE_SESSION
            sessions = await client.get_sessions()
            active = sessions[0] if sessions else None

            if active is not None and active.app_id == self.app_id:
                logger.info(f"[CAST] Joining running receiver session on {label}")
                await client.join(active, self.app_id)
            else:
                if active is not None:
                    await self._stop_other_app(client, active, label)
                stage = STAGE_LAUNCH
                if not await self._launch_with_retry(client, label):
                    return DeliveryResult(False, STAGE_LAUNCH, "receiver app launch failed twice")

            # Receiver apps need a moment before they accept LOAD
            await asyncio.sleep(self.load_settle)

            stage = STAGE_LOAD
            media = MediaDescriptor(
                url=media_url,
                content_type=mime_type,
                title=metadata.pop('title', None),
                metadata=metadata,
            )
            # Statuses seen so far describe whatever played before this LOAD
            self._discard_pending_events(client)
            media_session_id = await client.load(media, autoplay=True)
            logger.info(f"[CAST] Playing {mime_type} on {label} (media session {media_session_id})")

            stage = STAGE_PLAYBACK
            return await self._await_terminal_state(client, label, media_session_id)

        except Exception as e:
            logger.error(f"[CAST] Delivery to {label} failed during {stage}: {e}")
            return DeliveryResult(False, stage, str(e))
        finally:
            await self._close(client, label)

    async def _stop_other_app(self, client: CastControlClient, active: AppSession, label: str):
        logger.info(f"[CAST] Stopping {active.display_name or active.app_id} on {label}")
        await client.stop(active.session_id or NULL_SESSION_ID)
        await asyncio.sleep(self.stop_settle)

    async def _launch_with_retry(self, client: CastControlClient, label: str) -> bool:
        """Launch the receiver app; one retry after clearing a lingering session"""
        try:
            await client.launch(self.app_id)
            return True
        except CastLaunchError as e:
            logger.warning(f"[CAST] Launch on {label} failed ({e}), retrying once")

        try:
            await client.stop(NULL_SESSION_ID)
        except CastError as e:
            logger.debug(f"[CAST] Clearing lingering session on {label} failed: {e}")
        await asyncio.sleep(self.launch_retry_backoff)

        try:
            await client.launch(self.app_id)
            return True
        except CastLaunchError as e:
            logger.error(f"[CAST] Launch on {label} failed again, giving up: {e}")
            return False

    @staticmethod
    def _discard_pending_events(client: CastControlClient):
        events = client.events()
        while not events.empty():
            events.get_nowait()

    async def _await_terminal_state(self, client: CastControlClient, label: str,
                                    media_session_id: Optional[int] = None) -> DeliveryResult:
        """Wait for the player to finish, bounded by the session ceiling"""
        try:
            return await asyncio.wait_for(
                self._watch_player(client, label, media_session_id), self.session_ceiling
            )
        except asyncio.TimeoutError:
            logger.warning(f"[CAST] No terminal player state from {label} after {self.session_ceiling}s, closing")
            return DeliveryResult(False, STAGE_PLAYBACK, "session ceiling reached")

    async def _watch_player(self, client: CastControlClient, label: str,
                            media_session_id: Optional[int] = None) -> DeliveryResult:
        events = client.events()
        seen_active = False
        while True:
            event = await events.get()
            if (media_session_id is not None and event.media_session_id is not None
                    and event.media_session_id != media_session_id):
                logger.debug(f"[CAST] Skipping status of media session {event.media_session_id} on {label}")
                continue
            if event.failed:
                logger.error(f"[CAST] {label} rejected media: {event.idle_reason}")
                return DeliveryResult(False, STAGE_LOAD, event.idle_reason)
            if event.player_state in ("PLAYING", "BUFFERING", "PAUSED"):
                seen_active = True
            elif event.player_state == "IDLE" and (seen_active or _ends_fresh_load(event.idle_reason)):
                if event.idle_reason == "ERROR":
                    logger.error(f"[CAST] Playback on {label} ended with an error")
                    return DeliveryResult(False, STAGE_PLAYBACK, "player reported ERROR")
                logger.info(f"[CAST] Playback on {label} finished ({event.idle_reason or 'idle'})")
                return DeliveryResult(True, STAGE_DONE)

    async def _close(self, client: CastControlClient, label: str):
        try:
            await client.close()
            logger.debug(f"[CAST] Connection to {label} closed")
        except Exception as e:
            logger.warning(f"[CAST] Closing connection to {label} failed: {e}")


def _ends_fresh_load(idle_reason: Optional[str]) -> bool:
    # INTERRUPTED before playback started belongs to the media this LOAD replaced
    return bool(idle_reason) and idle_reason != "INTERRUPTED"
