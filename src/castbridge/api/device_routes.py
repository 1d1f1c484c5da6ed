"""
Device control API routes
Commands are written to control points, the router picks them up from there
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from typing import Optional
import logging

from castbridge.services.registry_sync import (
    CONTROL_BROADCAST,
    CONTROL_VOLUME,
    CONTROL_YOUTUBE,
    RegistrySync,
)

logger = logging.getLogger(__name__)

# Request models
class BroadcastRequest(BaseModel):
    text: str = Field(..., min_length=1)

class VolumeRequest(BaseModel):
    level: float = Field(..., ge=0, le=100)

class YoutubeRequest(BaseModel):
    url: str = Field(..., min_length=1)

class CommandResponse(BaseModel):
    device_id: Optional[str]
    control: str
    state_id: str
    status: str = "queued"


def create_device_routes(registry: RegistrySync, pairing):
    """Create device listing and command routes"""
    router = APIRouter(prefix="/api", tags=["devices"])

    async def _require_device(device_id: str):
        device = await registry.get_device(device_id)
        if device is None:
            raise HTTPException(status_code=404, detail=f"Device {device_id} not found")
        return device

    async def _write_control(device_id: str, control: str, value) -> CommandResponse:
        await _require_device(device_id)
        state_id = registry.control_state_id(device_id, control)
        await registry.store.set_state(state_id, value, ack=False)
        logger.info(f"[API] {control} command queued for {device_id}")
        return CommandResponse(device_id=device_id, control=control, state_id=state_id)

    @router.get("/devices")
    async def list_devices():
        """List all known cast devices and groups"""
        devices = await registry.get_devices()
        result = []
        for device in devices:
            summary = registry.device_summary(device)
            mapping = pairing.get_mapping(device.id)
            summary["effective_address"] = str(mapping.target_address) if mapping else str(device.address)
            result.append(summary)
        return result

    @router.get("/devices/{device_id}")
    async def get_device(device_id: str):
        device = await _require_device(device_id)
        summary = registry.device_summary(device)
        volume = await registry.store.get_state(registry.control_state_id(device_id, CONTROL_VOLUME))
        summary["volume"] = volume.val if volume else None
        return summary

    @router.get("/pairs")
    async def list_pair_mappings():
        """Device -> stereo pair group redirections currently in effect"""
        return [{
            "device_id": m.source_device_id,
            "group_name": m.group_name,
            "target_address": str(m.target_address)
        } for m in pairing.mappings.values()]

    @router.post("/devices/{device_id}/broadcast", response_model=CommandResponse)
    async def broadcast(device_id: str, request: BroadcastRequest):
        return await _write_control(device_id, CONTROL_BROADCAST, request.text)

    @router.post("/devices/{device_id}/volume", response_model=CommandResponse)
    async def set_volume(device_id: str, request: VolumeRequest):
        return await _write_control(device_id, CONTROL_VOLUME, request.level)

    @router.post("/devices/{device_id}/youtube", response_model=CommandResponse)
    async def play_youtube(device_id: str, request: YoutubeRequest):
        return await _write_control(device_id, CONTROL_YOUTUBE, request.url)

    @router.post("/broadcast", response_model=CommandResponse)
    async def broadcast_all(request: BroadcastRequest):
        """Speak on every available device"""
        state_id = registry.broadcast_all_id
        await registry.store.set_state(state_id, request.text, ack=False)
        logger.info("[API] Broadcast to all devices queued")
        return CommandResponse(device_id=None, control="broadcast_all", state_id=state_id)

    return router
