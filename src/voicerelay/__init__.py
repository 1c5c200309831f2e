"""Voice relay: browser audio to Deepgram ASR, OpenAI chat and ElevenLabs TTS."""

__version__ = "0.1.0"
