"""
Bounded single-producer/single-consumer frame channel.

The capacity bound is the pipeline's only backpressure mechanism: when the
processing thread falls behind, send() blocks the acquisition thread, which
in turn delays the next device read. The channel itself never drops or
reorders frames.
"""

from __future__ import annotations

import queue
import threading
from typing import Iterator, Optional

from models.errors import ChannelClosed
from models.frame import FrameData

DEFAULT_CAPACITY = 100


class BoundedFrameChannel:
    """
    FIFO of at most `capacity` frames.

    Blocking operations wake up every `poll_interval` seconds to check for
    shutdown, so neither side can hang forever:

    - close() is the producer's end-of-stream: further sends fail, and the
      consumer drains what is queued before receive() raises ChannelClosed.
    - cancel() tears the channel down: both sides raise ChannelClosed at
      their next suspension point and queued frames are discarded.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = 0.1,
    ):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.poll_interval = poll_interval
        self._queue: "queue.Queue[FrameData]" = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()
        self._cancelled = cancel_event if cancel_event is not None else threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def full(self) -> bool:
        return self._queue.full()

    def send(self, frame: FrameData) -> None:
        """
        Append a frame, blocking while the channel is full.

        Raises:
            ChannelClosed: If the channel is closed or cancelled.
        """
        while True:
            if self._cancelled.is_set() or self._closed.is_set():
                raise ChannelClosed("send on closed channel")
            try:
                self._queue.put(frame, timeout=self.poll_interval)
                return
            except queue.Full:
                continue

    def receive(self) -> FrameData:
        """
        Remove and return the oldest frame, blocking while the channel is empty.

        Raises:
            ChannelClosed: If cancelled, or closed with nothing left to drain.
        """
        while True:
            if self._cancelled.is_set():
                raise ChannelClosed("channel cancelled")
            try:
                return self._queue.get(timeout=self.poll_interval)
            except queue.Empty:
                if self._closed.is_set() and self._queue.empty():
                    raise ChannelClosed("channel closed and drained")

    def close(self) -> None:
        """Mark end of stream. Queued frames remain receivable."""
        self._closed.set()

    def cancel(self) -> None:
        """Abort both sides and discard queued frames."""
        self._cancelled.set()
        self._closed.set()
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

    def __iter__(self) -> Iterator[FrameData]:
        while True:
            try:
                yield self.receive()
            except ChannelClosed:
                return
