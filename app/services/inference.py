"""Inference service - runs queued generations one at a time on the loaded model."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Awaitable, Callable

from app.config import Settings
from app.core.decoder import Decoder, GenerationRequest, GenerationResult
from app.core.errors import GenerationCancelled
from app.core.queue import InferenceJob, RequestQueue

logger = logging.getLogger(__name__)


class InferenceService:
    """Service that serializes generations against a single model.

    Backends keep hidden state (e.g. the llama.cpp KV cache) and are not safe
    for concurrent use, so exactly one generation runs at a time on a single
    worker thread. Further requests wait in a bounded queue and are rejected
    once it is full.
    """

    def __init__(
        self,
        decoder: Decoder | None,
        request_queue: RequestQueue,
        settings: Settings,
    ):
        """Initialize the inference service.

        Args:
            decoder: The decoder bound to the loaded model, or None when no
                model could be loaded.
            request_queue: The queue of pending jobs.
            settings: Application settings (prompt template, stop markers).
        """
        self.decoder = decoder
        self.request_queue = request_queue
        self.settings = settings
        self._executor = ThreadPoolExecutor(max_workers=1)
        self._active: InferenceJob | None = None
        self._running = False
        self.disconnect_poll_interval = 0.1

    @property
    def is_ready(self) -> bool:
        return self.decoder is not None

    @property
    def active_count(self) -> int:
        """Get the number of currently running generations (0 or 1)."""
        return 1 if self._active is not None else 0

    def prepare(
        self,
        prompt: str,
        max_tokens: int = 100,
        temperature: float | None = None,
        top_p: float = 0.9,
        stop_sequences: list[str] | None = None,
    ) -> GenerationRequest:
        """Build a decoder request, applying the prompt template and defaults.

        Raises:
            InvalidArgument: If the parameters are out of range.
        """
        if temperature is None:
            temperature = self.decoder.config.temperature if self.decoder else self.settings.temperature

        if prompt:
            prompt = self.settings.prompt_template.format(
                prompt=prompt,
                system=self.settings.system_prompt or "",
            )

        return GenerationRequest(
            prompt=prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            top_p=top_p,
            stop_sequences=tuple(stop_sequences or ()) + tuple(self.settings.stop_markers),
        )

    def submit(self, request: GenerationRequest) -> InferenceJob:
        """Queue a request for generation.

        Raises:
            RuntimeError: If no model is loaded.
            asyncio.QueueFull: If too many requests are already pending.
        """
        if not self.is_ready:
            raise RuntimeError("Model not loaded")

        job = InferenceJob(request=request)
        self.request_queue.put(job)
        logger.info(
            f"Request {job.id} queued "
            f"(queue size: {self.request_queue.size}, active: {self.active_count})"
        )
        return job

    async def generate(
        self,
        request: GenerationRequest,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> GenerationResult:
        """Queue a request and wait for its result.

        Args:
            request: The generation to run.
            is_disconnected: Polled while waiting; once it returns True the job
                is cancelled and the decoder stops after its current step.

        Raises:
            GenerationCancelled: If the caller disconnected first.
        """
        job = self.submit(request)
        if is_disconnected is None:
            result = await job.result()
        else:
            result = await self._wait_while_connected(job, is_disconnected)
        return self._strip_markers(result)

    async def _wait_while_connected(
        self,
        job: InferenceJob,
        is_disconnected: Callable[[], Awaitable[bool]],
    ) -> GenerationResult:
        waiter = asyncio.ensure_future(job.result())
        try:
            while True:
                done, _ = await asyncio.wait({waiter}, timeout=self.disconnect_poll_interval)
                if done:
                    return waiter.result()
                if await is_disconnected():
                    logger.info(f"Client disconnected, cancelling request {job.id}")
                    job.cancel()
                    return await waiter
        finally:
            if not waiter.done():
                waiter.cancel()

    def _strip_markers(self, result: GenerationResult) -> GenerationResult:
        if not self.settings.stop_markers:
            return result
        text = result.text
        for marker in self.settings.stop_markers:
            text = text.replace(marker, "")
        return replace(result, text=text.strip())

    async def run(self) -> None:
        """Drain the queue until stopped."""
        self._running = True
        logger.info("Inference worker started")

        while self._running:
            try:
                job = await self.request_queue.get()
            except asyncio.CancelledError:
                logger.info("Inference worker cancelled")
                break

            try:
                await self._process(job)
            finally:
                self.request_queue.task_done()

        logger.info("Inference worker stopped")

    async def _process(self, job: InferenceJob) -> None:
        """Run one job on the worker thread and resolve its future."""
        if job.cancelled:
            logger.info(f"Request {job.id} cancelled before start")
            job.fail(GenerationCancelled("generation cancelled"))
            return

        loop = asyncio.get_running_loop()
        self._active = job
        try:
            result = await loop.run_in_executor(
                self._executor,
                self.decoder.generate,
                job.request,
                job.cancel_event,
            )
        except asyncio.CancelledError:
            job.cancel()
            job.fail(GenerationCancelled("service shutting down"))
            raise
        except Exception as e:
            logger.error(f"Generation error for request {job.id}: {e}")
            job.fail(e)
            return
        finally:
            self._active = None

        logger.info(
            f"Request {job.id} completed "
            f"({result.tokens_generated} tokens in {result.processing_time_ms:.1f} ms)"
        )
        job.complete(result)

    def stop(self) -> None:
        """Stop the service."""
        self._running = False
        if self._active is not None:
            self._active.cancel()
        self._executor.shutdown(wait=False)
