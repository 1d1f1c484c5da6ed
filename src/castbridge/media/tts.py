"""
Speech synthesis engines
Both engines return MP3 bytes for a text in a given language
"""

import asyncio
import io
import logging
import re
from functools import partial
from typing import Dict, List, Optional

from gtts import gTTS, gTTSError

from castbridge.http_helper import create_http_session

logger = logging.getLogger(__name__)

TRANSLATE_TTS_URL = "https://translate.google.com/translate_tts"
MAX_CHUNK_LENGTH = 200


class SynthesisError(Exception):
    """Speech could not be produced for a text"""


class SpeechSynthesizer:
    name = "base"

    async def synthesize(self, text: str, language: str, voice: Optional[str] = None) -> bytes:
        raise NotImplementedError


class GttsSynthesizer(SpeechSynthesizer):
    """gTTS runs blocking HTTP requests, so it is moved to the default executor"""

    name = "gtts"

    def __init__(self, default_tld: str = "com"):
        self.default_tld = default_tld

    async def synthesize(self, text: str, language: str, voice: Optional[str] = None) -> bytes:
        if not text or not text.strip():
            raise SynthesisError("nothing to say")
        # The voice hint picks the regional Google domain (accent), e.g. "co.uk"
        tld = voice or self.default_tld
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(self._render, text, language, tld))
        except (gTTSError, ValueError, AssertionError) as e:
            raise SynthesisError(f"gTTS failed for language {language}: {e}") from e

    @staticmethod
    def _render(text: str, language: str, tld: str) -> bytes:
        buffer = io.BytesIO()
        gTTS(text=text, lang=language, tld=tld).write_to_fp(buffer)
        return buffer.getvalue()


class GoogleTranslateSynthesizer(SpeechSynthesizer):
    """Direct requests to the translate TTS endpoint, one per chunk of text"""

    name = "google_translate"

    def __init__(self, timeout_seconds: float = 10):
        self.timeout_seconds = timeout_seconds

    async def synthesize(self, text: str, language: str, voice: Optional[str] = None) -> bytes:
        chunks = split_text(text)
        if not chunks:
            raise SynthesisError("nothing to say")

        audio = bytearray()
        try:
            async with create_http_session(self.timeout_seconds) as session:
                for idx, chunk in enumerate(chunks):
                    params = {
                        "ie": "UTF-8",
                        "client": "tw-ob",
                        "tl": language,
                        "q": chunk,
                        "total": str(len(chunks)),
                        "idx": str(idx),
                        "textlen": str(len(chunk)),
                    }
                    async with session.get(TRANSLATE_TTS_URL, params=params) as response:
                        if response.status != 200:
                            raise SynthesisError(f"HTTP {response.status} for chunk {idx + 1}/{len(chunks)}")
                        audio.extend(await response.read())
        except SynthesisError:
            raise
        except Exception as e:
            raise SynthesisError(f"translate TTS request failed: {e}") from e

        logger.debug(f"[TTS] {len(chunks)} chunk(s), {len(audio)} bytes")
        return bytes(audio)


def split_text(text: str, limit: int = MAX_CHUNK_LENGTH) -> List[str]:
    """Split on whitespace into chunks of at most limit characters; overlong words are cut"""
    chunks: List[str] = []
    current = ""
    for word in re.split(r"\s+", text.strip()):
        if not word:
            continue
        while len(word) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(word[:limit])
            word = word[limit:]
        if not word:
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) > limit:
            chunks.append(current)
            current = word
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


ENGINES = {
    GttsSynthesizer.name: GttsSynthesizer,
    GoogleTranslateSynthesizer.name: GoogleTranslateSynthesizer,
}


def create_synthesizer(config: Dict) -> SpeechSynthesizer:
    engine = config.get('engine', GttsSynthesizer.name)
    if engine == GoogleTranslateSynthesizer.name:
        return GoogleTranslateSynthesizer(config.get('request_timeout_seconds', 10))
    if engine == GttsSynthesizer.name:
        return GttsSynthesizer(config.get('default_tld', 'com'))
    raise ValueError(f"Unknown tts.engine '{engine}', expected one of {sorted(ENGINES)}")
