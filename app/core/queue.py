"""Async request queue for pending generations."""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field

from app.core.decoder import GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)


@dataclass
class InferenceJob:
    """A single generation waiting for, or running on, the model."""

    request: GenerationRequest

    # Internal state
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    created_at_monotonic: float = field(default_factory=time.monotonic)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    _future: asyncio.Future = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        """Ask the decoder to stop after its current scorer call."""
        self.cancel_event.set()

    def complete(self, result: GenerationResult) -> None:
        """Mark the job as complete.

        Args:
            result: The finished generation.
        """
        if not self._future.done():
            self._future.set_result(result)

    def fail(self, error: Exception) -> None:
        """Mark the job as failed.

        Args:
            error: The exception that caused the failure.
        """
        if not self._future.done():
            self._future.set_exception(error)

    async def result(self) -> GenerationResult:
        """Wait for the generation to finish.

        Cancelling the waiting coroutine cancels the job.

        Raises:
            Exception: If the job failed with an error.
        """
        try:
            return await asyncio.shield(self._future)
        except asyncio.CancelledError:
            self.cancel()
            raise


class RequestQueue:
    """Bounded async queue of inference jobs."""

    def __init__(self, maxsize: int = 100):
        """Initialize the request queue.

        Args:
            maxsize: Maximum number of pending jobs.
        """
        self._queue: asyncio.Queue[InferenceJob] = asyncio.Queue(maxsize=maxsize)

    @property
    def size(self) -> int:
        """Get the current queue size."""
        return self._queue.qsize()

    @property
    def maxsize(self) -> int:
        """Get configured queue capacity."""
        return self._queue.maxsize

    @property
    def is_full(self) -> bool:
        """Check whether the queue is at capacity."""
        return self.maxsize > 0 and self.size >= self.maxsize

    def put(self, job: InferenceJob) -> None:
        """Add a job to the queue.

        Raises:
            asyncio.QueueFull: If the queue is at capacity.
        """
        self._queue.put_nowait(job)
        logger.debug(f"Job {job.id} queued (queue size: {self.size})")

    async def get(self) -> InferenceJob:
        """Get the next job from the queue."""
        job = await self._queue.get()
        logger.debug(f"Job {job.id} dequeued (queue size: {self.size})")
        return job

    def task_done(self) -> None:
        """Mark the current task as done."""
        self._queue.task_done()
