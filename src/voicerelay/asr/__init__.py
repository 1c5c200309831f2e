"""Streaming speech-to-text (ASR) integration."""

from voicerelay.asr.base import (
    AsrClient,
    AsrConnection,
    AsrEvent,
    AsrListener,
    ReadyState,
    Transcript,
)
from voicerelay.asr.deepgram import DeepgramClient, DeepgramConnection
from voicerelay.asr.stream import AsrStreamManager

__all__ = [
    "AsrClient",
    "AsrConnection",
    "AsrEvent",
    "AsrListener",
    "AsrStreamManager",
    "DeepgramClient",
    "DeepgramConnection",
    "ReadyState",
    "Transcript",
]
