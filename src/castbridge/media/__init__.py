"""
Media collaborators: speech synthesis, YouTube resolution and the audio buffer origin
"""

from .audio_cache import AudioBufferCache
from .tts import SpeechSynthesizer, SynthesisError, create_synthesizer
from .youtube import MediaResolutionError, MediaResolver, ResolvedMedia

__all__ = [
    'AudioBufferCache', 'SpeechSynthesizer', 'SynthesisError', 'create_synthesizer',
    'MediaResolutionError', 'MediaResolver', 'ResolvedMedia',
]
