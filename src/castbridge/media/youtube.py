"""
YouTube media resolution
Turns a video URL or id into a directly playable audio stream via yt-dlp
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from functools import partial
from typing import Optional
from urllib.parse import parse_qs, urlparse

import yt_dlp

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = {"youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com", "youtu.be"}
VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
AUDIO_FORMAT = "bestaudio[ext=m4a]/bestaudio/best"
DEFAULT_YTDL_OPTS = {"quiet": True, "no_warnings": True, "noplaylist": True}
# Content type announced to receivers for every resolved stream
YOUTUBE_MIME_TYPE = "audio/mp4"


class MediaResolutionError(Exception):
    """Reference is not a playable YouTube item"""


@dataclass(frozen=True)
class ResolvedMedia:
    stream_url: str
    title: Optional[str] = None
    author: Optional[str] = None


def extract_video_id(ref: str) -> Optional[str]:
    ref = (ref or "").strip()
    if VIDEO_ID.match(ref):
        return ref

    parsed = urlparse(ref if "://" in ref else f"https://{ref}")
    host = (parsed.hostname or "").lower()
    if host not in YOUTUBE_HOSTS:
        return None

    if host == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif parsed.path == "/watch":
        candidate = parse_qs(parsed.query).get("v", [""])[0]
    else:
        parts = [p for p in parsed.path.split("/") if p]
        candidate = parts[1] if len(parts) >= 2 and parts[0] in ("embed", "shorts", "live", "v") else ""
    return candidate if VIDEO_ID.match(candidate) else None


class MediaResolver:
    """Validation is local; resolution calls out to YouTube through yt-dlp"""

    def __init__(self, ytdl_options: Optional[dict] = None):
        self.ytdl_options = dict(DEFAULT_YTDL_OPTS)
        if ytdl_options:
            self.ytdl_options.update(ytdl_options)
        self.ytdl_options["format"] = AUDIO_FORMAT

    def validate(self, ref: str) -> bool:
        return extract_video_id(ref) is not None

    async def resolve(self, ref: str) -> ResolvedMedia:
        video_id = extract_video_id(ref)
        if video_id is None:
            raise MediaResolutionError(f"not a YouTube reference: {ref}")

        url = f"https://www.youtube.com/watch?v={video_id}"
        loop = asyncio.get_running_loop()
        try:
            info = await loop.run_in_executor(None, partial(self._extract, url))
        except (yt_dlp.utils.DownloadError, yt_dlp.utils.ExtractorError) as e:
            raise MediaResolutionError(f"yt-dlp could not resolve {video_id}: {e}") from e

        stream_url = info.get("url")
        if not stream_url:
            raise MediaResolutionError(f"no audio stream for {video_id}")

        media = ResolvedMedia(
            stream_url=stream_url,
            title=info.get("title"),
            author=info.get("uploader") or info.get("channel"),
        )
        logger.info(f"[MEDIA] Resolved {video_id}: {media.title} ({info.get('ext', 'unknown')})")
        return media

    def _extract(self, url: str) -> dict:
        with yt_dlp.YoutubeDL(dict(self.ytdl_options)) as ydl:
            return ydl.extract_info(url, download=False)
