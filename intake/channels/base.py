"""VoiceChannel ABC — the audio transport a session listens and speaks through.

Whatever the transport (browser microphone, telephony stream, local sound
card), the rest of the intake stack works exclusively with PCM 16kHz mono
int16 frames.  Implementors convert to and from their native format.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator


@dataclass
class AudioFrame:
    """Normalized audio frame: PCM 16kHz mono int16 little-endian."""

    samples: bytes  # int16 LE PCM
    sample_rate: int = 16000
    channels: int = 1

    @property
    def duration_ms(self) -> float:
        """Duration of this frame in milliseconds."""
        return (self.num_samples / self.sample_rate) * 1000

    @property
    def num_samples(self) -> int:
        """Number of int16 samples in this frame."""
        return len(self.samples) // 2

    @classmethod
    def silence(cls, duration_ms: float, sample_rate: int = 16000) -> "AudioFrame":
        num_samples = int(sample_rate * duration_ms / 1000)
        return cls(samples=b"\x00\x00" * num_samples, sample_rate=sample_rate)


class VoiceChannel(ABC):
    """Abstract voice channel — capture from and playback to the user."""

    @abstractmethod
    def receive_audio(self) -> AsyncIterator[AudioFrame]:
        """Yield normalized PCM 16kHz audio frames from the user.

        An async generator that ends when the transport closes.
        """

    @abstractmethod
    async def send_audio(self, frames: list[AudioFrame]) -> None:
        """Play frames to the user, returning once playback has finished."""

    @abstractmethod
    async def stop_playback(self) -> None:
        """Interrupt any audio currently being played."""

    @abstractmethod
    async def close(self) -> None:
        """Tear down the channel connection.  Safe to call multiple times."""
