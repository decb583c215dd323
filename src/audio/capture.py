"""Capture Pipeline - microphone blocks to transport frames.

Each 4096-sample block delivered by the capture context becomes exactly one
AudioFrame (16-bit PCM, base64 on the wire) and exactly one send on the
transport. The capture callback never waits on the transport: frames go
into a FIFO drained by a single sender task, so a slow transport queues
frames instead of stalling capture, and frames reach the transport in
capture order.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import numpy as np

from src.audio.pcm import AudioFrame, encode_frame
from src.config.constants import VOICE
from src.observability.logging import get_logger
from src.observability.metrics import record_frame_sent

logger = get_logger(__name__)

SendFn = Callable[[AudioFrame], Awaitable[None]]
ErrorFn = Callable[[Exception], None]


class CapturePipeline:
    """Encodes capture blocks and forwards them to the transport in order.

    Usage:
        pipeline = CapturePipeline(send=session.send, on_error=handle_error)
        pipeline.start()
        capture.start(pipeline.on_block)
        ...
        await pipeline.stop()
    """

    def __init__(
        self,
        send: SendFn,
        on_error: ErrorFn | None = None,
        clamp: bool = True,
        mime_type: str = VOICE.CAPTURE_MIME_TYPE,
        session_id: str = "",
    ) -> None:
        self._send = send
        self._on_error = on_error
        self._clamp = clamp
        self._mime_type = mime_type
        self._queue: asyncio.Queue[AudioFrame] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._seq = 0
        self._sent = 0
        self._running = False
        self._log = logger.bind(session_id=session_id) if session_id else logger

    @property
    def frames_captured(self) -> int:
        return self._seq

    @property
    def frames_sent(self) -> int:
        return self._sent

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the sender task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._drain())

    def on_block(self, block: np.ndarray) -> None:
        """Capture callback: one block in, one frame queued."""
        if not self._running:
            return
        frame = encode_frame(block, seq=self._seq, clamp=self._clamp, mime_type=self._mime_type)
        self._seq += 1
        self._queue.put_nowait(frame)

    async def stop(self) -> None:
        """Stop sending. Frames still queued are dropped."""
        if not self._running:
            return
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        dropped = self._queue.qsize()
        while not self._queue.empty():
            self._queue.get_nowait()
        if dropped:
            self._log.debug("capture_frames_dropped", dropped=dropped)

    async def _drain(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await self._send(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.warning("capture_send_error", seq=frame.seq, error=str(e))
                self._running = False
                if self._on_error is not None:
                    self._on_error(e)
                return
            self._sent += 1
            record_frame_sent()
