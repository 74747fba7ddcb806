"""Autoregressive decoding loop over a pluggable tokenizer and scorer."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np

from app.core.errors import (
    GenerationCancelled,
    GenerationError,
    InvalidArgument,
    ScorerError,
    TokenizerError,
)
from app.core.sampling import sample_token

logger = logging.getLogger(__name__)


class Tokenizer(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, token_ids: Sequence[int]) -> str: ...


class Scorer(Protocol):
    def next_logits(self, context: Sequence[int]) -> Sequence[float]: ...


@dataclass(frozen=True)
class GenerationRequest:
    """Parameters for one generation call."""

    prompt: str
    max_tokens: int = 100
    temperature: float = 0.7
    top_p: float = 0.9
    stop_sequences: tuple[str, ...] = ()

    def __post_init__(self):
        if not self.prompt:
            raise InvalidArgument("prompt must not be empty")
        if self.max_tokens <= 0:
            raise InvalidArgument(f"max_tokens must be positive, got {self.max_tokens}")
        if self.temperature < 0:
            raise InvalidArgument(f"temperature must be >= 0, got {self.temperature}")
        if not 0 < self.top_p <= 1:
            raise InvalidArgument(f"top_p must be in (0, 1], got {self.top_p}")
        # Lists from the wire are frozen so the request stays immutable.
        object.__setattr__(self, "stop_sequences", tuple(s for s in self.stop_sequences if s))


@dataclass(frozen=True)
class GenerationResult:
    text: str
    tokens_generated: int
    processing_time_ms: float


@dataclass(frozen=True)
class DecoderConfig:
    """Immutable decoder limits, built once at startup.

    Attributes:
        max_tokens: Ceiling applied on top of each request's ``max_tokens``.
        temperature: Default temperature for callers that do not send one.
        max_context_size: Scorer context window in tokens.
        eos_token_id: Token that ends generation, or None to disable.
    """

    max_tokens: int = 2048
    temperature: float = 0.7
    max_context_size: int = 2048
    eos_token_id: int | None = None


class Decoder:
    """Runs the generation loop for one request at a time.

    The decoder itself holds no per-request state; the sampling RNG is
    created once per decoder (i.e. per process) and seeded from ``seed``, or
    from OS entropy when ``seed`` is None.
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        scorer: Scorer,
        config: DecoderConfig,
        seed: int | None = None,
    ):
        self.tokenizer = tokenizer
        self.scorer = scorer
        self.config = config
        self._rng = np.random.default_rng(seed)

    def generate(
        self,
        request: GenerationRequest,
        cancel_event: threading.Event | None = None,
    ) -> GenerationResult:
        """Generate a continuation of ``request.prompt``.

        At most ``min(request.max_tokens, config.max_tokens, max_context_size -
        prompt length)`` tokens are generated. ``config.max_tokens`` is the
        server-wide ceiling; it never raises a request's own limit.

        Args:
            request: The generation parameters.
            cancel_event: When set, the loop stops before the next scorer call.

        Returns:
            The generated text (prompt excluded), token count and elapsed time.

        Raises:
            InvalidArgument: If the prompt encodes to zero tokens.
            TokenizerError: If the prompt cannot be encoded.
            ScorerError: If the scorer fails.
            GenerationCancelled: If ``cancel_event`` was set mid-generation.
            GenerationError: If generated tokens cannot be decoded.
        """
        started = time.perf_counter()

        try:
            prompt_tokens = list(self.tokenizer.encode(request.prompt))
        except Exception as e:
            raise TokenizerError(f"Failed to encode prompt: {e}") from e
        if not prompt_tokens:
            raise InvalidArgument("prompt encodes to zero tokens")

        context = list(prompt_tokens)
        budget = min(
            request.max_tokens,
            self.config.max_tokens,
            self.config.max_context_size - len(prompt_tokens),
        )
        if budget <= 0:
            logger.debug(f"No token budget left for a {len(prompt_tokens)}-token prompt")
            return GenerationResult("", 0, self._elapsed_ms(started))

        text = ""
        for _ in range(budget):
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelled("generation cancelled")

            try:
                logits = self.scorer.next_logits(context)
                vocab_size = len(logits)
            except Exception as e:
                raise ScorerError(str(e)) from e
            if vocab_size == 0:
                raise ScorerError("scorer returned an empty logit vector")

            token = sample_token(logits, request.temperature, request.top_p, self._rng)
            context.append(token)

            text = self._decode(context[len(prompt_tokens):])
            if any(stop in text for stop in request.stop_sequences):
                break
            if token == self.config.eos_token_id:
                break

        return GenerationResult(
            text=text,
            tokens_generated=len(context) - len(prompt_tokens),
            processing_time_ms=self._elapsed_ms(started),
        )

    def _decode(self, token_ids: list[int]) -> str:
        try:
            return self.tokenizer.decode(token_ids)
        except Exception as e:
            raise GenerationError(f"Failed to decode generated tokens: {e}") from e

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.perf_counter() - started) * 1000.0
