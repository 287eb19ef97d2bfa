"""In-process voice channel fed through asyncio queues.

Used when the embedding application owns the audio device (a browser
bridge, a test harness): it pushes captured frames in with
``push_frame`` and reads played frames back from ``played``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

from intake.channels.base import AudioFrame, VoiceChannel

log = logging.getLogger("intake.channels.queue")


class QueueVoiceChannel(VoiceChannel):
    def __init__(self, max_buffered_frames: int = 0) -> None:
        self._inbound: asyncio.Queue[Optional[AudioFrame]] = asyncio.Queue(maxsize=max_buffered_frames)
        self._closed = False
        self.played: list[AudioFrame] = []
        self.playback_interrupted = 0

    async def push_frame(self, frame: AudioFrame) -> None:
        if self._closed:
            raise RuntimeError("channel is closed")
        await self._inbound.put(frame)

    async def receive_audio(self) -> AsyncIterator[AudioFrame]:
        while True:
            if self._closed and self._inbound.empty():
                return
            frame = await self._inbound.get()
            if frame is None:
                return
            yield frame

    async def send_audio(self, frames: list[AudioFrame]) -> None:
        self.played.extend(frames)

    async def stop_playback(self) -> None:
        self.playback_interrupted += 1

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Sentinel ends any receive_audio() consumer
        await self._inbound.put(None)
        log.info("Queue channel closed")

    @property
    def is_closed(self) -> bool:
        return self._closed
