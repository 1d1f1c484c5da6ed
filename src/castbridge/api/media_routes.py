"""
Audio buffer origin - receivers fetch synthesized speech from here
"""

from fastapi import APIRouter, HTTPException, Response

from castbridge.media.audio_cache import AudioBufferCache

def create_media_routes(audio_cache: AudioBufferCache):
    router = APIRouter(tags=["media"])

    @router.get("/audio/{device_id}.mp3")
    async def get_audio(device_id: str):
        data = audio_cache.get(device_id)
        if data is None:
            raise HTTPException(status_code=404, detail="Audio expired or never stored")
        return Response(
            content=data,
            media_type="audio/mpeg",
            headers={"Cache-Control": "no-store"}
        )

    return router
