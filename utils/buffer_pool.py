import io
import logging
import queue
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class BufferPool:
    """
    Thread-safe pool of reusable in-memory byte buffers.

    Workbooks are serialized into a pooled ``BytesIO`` instead of a fresh one
    per request. ``acquire`` is the only way to get a buffer and always puts
    it back, emptied, whatever happens inside the ``with`` block.

    Args:
        max_idle: Number of released buffers kept for reuse. Extra buffers
            released while the pool is full are dropped.
    """

    def __init__(self, max_idle: int = 4):
        if max_idle < 0:
            raise ValueError("max_idle must be >= 0")
        self._idle: "queue.LifoQueue[io.BytesIO]" = queue.LifoQueue(maxsize=max_idle)
        self.max_idle = max_idle

    @contextmanager
    def acquire(self) -> Iterator[io.BytesIO]:
        try:
            buffer = self._idle.get_nowait()
        except queue.Empty:
            buffer = io.BytesIO()
        try:
            yield buffer
        finally:
            buffer.seek(0)
            buffer.truncate()
            try:
                self._idle.put_nowait(buffer)
            except queue.Full:
                logger.debug("Buffer pool full, dropping released buffer")

    @property
    def idle_count(self) -> int:
        return self._idle.qsize()
