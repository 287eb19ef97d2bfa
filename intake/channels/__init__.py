"""Audio transports for capture and playback."""

from .base import AudioFrame, VoiceChannel
from .queue_channel import QueueVoiceChannel

__all__ = ["AudioFrame", "QueueVoiceChannel", "VoiceChannel"]
