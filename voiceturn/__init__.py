"""
VOICETURN - Voice Conversation Turn-Taking Orchestrator

Coordinates one hands-free (or push-to-talk) voice conversation with a
remote assistant: microphone capture and level metering, speech
transcription, reply generation and spoken playback, with barge-in and
error recovery.

Architecture:
    - Pure transition function: (session, event) -> phase, effects, updates
    - One orchestrator executes effects and owns every timer of a call
    - Remote services behind aiohttp clients; audio through sounddevice
"""

__version__ = "0.1.0"

VERSION_INFO = (0, 1, 0)

from voiceturn.exceptions import VoiceTurnError

from voiceturn.config import VoiceTurnConfig, load_config

from voiceturn.session import Phase, Session, Speaker, Utterance

from voiceturn.orchestrator import TurnTakingOrchestrator, create_orchestrator
