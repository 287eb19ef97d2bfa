"""Utterance capture with energy-based silence auto-stop.

VoiceRecorder reads frames from a VoiceChannel until one of:
  - the user has been below the RMS threshold for ``silence_duration``
  - the hard ``max_duration`` wall-clock limit is hit (always applies)
  - ``stop()`` is called (pause/cancel)
  - the channel's frame stream ends
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from intake.channels.base import VoiceChannel
from intake.config import Settings
from intake.exceptions import SpeechIOError

log = logging.getLogger("intake.recording")


class StopReason(str, Enum):
    SILENCE = "silence"
    MAX_DURATION = "max_duration"
    STOPPED = "stopped"
    STREAM_ENDED = "stream_ended"


@dataclass
class RecordingConfig:
    sample_rate: int = 16000
    max_duration_seconds: float = 30.0
    silence_threshold: int = 500           # int16 RMS
    silence_duration_seconds: float = 2.0

    @classmethod
    def from_settings(cls, config: Settings) -> "RecordingConfig":
        return cls(
            sample_rate=config.recording_sample_rate,
            max_duration_seconds=config.recording_max_duration_seconds,
            silence_threshold=config.recording_silence_threshold,
            silence_duration_seconds=config.recording_silence_duration_seconds,
        )


@dataclass
class RecordingResult:
    audio: bytes
    stop_reason: StopReason
    sample_rate: int = 16000
    peak_rms: float = 0.0
    speech_detected: bool = False

    @property
    def duration_ms(self) -> float:
        return (len(self.audio) // 2) / self.sample_rate * 1000


def compute_rms(pcm_bytes: bytes) -> float:
    """Compute RMS energy of int16 PCM audio."""
    if len(pcm_bytes) < 2:
        return 0.0
    usable = len(pcm_bytes) - (len(pcm_bytes) % 2)
    samples = np.frombuffer(pcm_bytes[:usable], dtype=np.int16).astype(np.float32)
    return float(np.sqrt(np.mean(samples**2)))


class VoiceRecorder:
    """Captures one utterance at a time from a channel."""

    def __init__(self, config: RecordingConfig | None = None) -> None:
        self.config = config or RecordingConfig()
        self._stop_event: asyncio.Event | None = None
        self._recording = False

    @property
    def is_recording(self) -> bool:
        return self._recording

    def stop(self) -> None:
        """Interrupt the current capture, if any."""
        if self._recording and self._stop_event is not None:
            log.debug("Recording stop requested")
            self._stop_event.set()

    async def record(self, channel: VoiceChannel) -> RecordingResult:
        if self._recording:
            raise RuntimeError("a recording is already in progress")

        self._stop_event = asyncio.Event()
        buffer = bytearray()
        levels = {"peak": 0.0}

        self._recording = True
        consume = asyncio.ensure_future(self._consume(channel, buffer, levels))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {consume, stopper},
                timeout=self.config.max_duration_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            self._recording = False
            for task in (consume, stopper):
                if not task.done():
                    task.cancel()
            await asyncio.gather(consume, stopper, return_exceptions=True)

        if consume in done:
            try:
                reason = consume.result()
            except Exception as e:
                raise SpeechIOError("Audio capture failed", details={"cause": str(e)}) from e
        elif stopper in done:
            reason = StopReason.STOPPED
        else:
            reason = StopReason.MAX_DURATION

        result = RecordingResult(
            audio=bytes(buffer),
            stop_reason=reason,
            sample_rate=self.config.sample_rate,
            peak_rms=levels["peak"],
            speech_detected=levels["peak"] >= self.config.silence_threshold,
        )
        log.info(
            "Recording finished: %s after %.0fms (peak rms %.0f)",
            reason.value, result.duration_ms, result.peak_rms,
        )
        return result

    async def _consume(self, channel: VoiceChannel, buffer: bytearray, levels: dict) -> StopReason:
        silence_limit_ms = self.config.silence_duration_seconds * 1000
        silent_ms = 0.0
        async for frame in channel.receive_audio():
            buffer.extend(frame.samples)
            rms = compute_rms(frame.samples)
            levels["peak"] = max(levels["peak"], rms)

            if rms < self.config.silence_threshold:
                silent_ms += frame.duration_ms
            else:
                silent_ms = 0.0

            if silent_ms >= silence_limit_ms:
                return StopReason.SILENCE
        return StopReason.STREAM_ENDED
