"""
Voice package for the care-line scheduling system

Contains the voice-AI provider integration:
- VoiceCallProvider: provider interface used by the executor and reconciler
- VapiProvider / MockVoiceCallProvider: HTTP and test implementations
- transcript: normalization of provider transcript shapes
"""

from .provider import (
    InitiateCallRequest,
    MockVoiceCallProvider,
    ProviderCall,
    ProviderCallDetails,
    VapiProvider,
    VoiceCallProvider,
    create_voice_provider,
)
from .transcript import format_transcript, normalize_transcript

__all__ = [
    'InitiateCallRequest',
    'MockVoiceCallProvider',
    'ProviderCall',
    'ProviderCallDetails',
    'VapiProvider',
    'VoiceCallProvider',
    'create_voice_provider',
    'format_transcript',
    'normalize_transcript',
]
