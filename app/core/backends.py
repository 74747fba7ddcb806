"""Inference backends: one tokenizer/scorer pair per supported runtime.

Each backend wraps a single long-lived model instance. Backends are not safe
for concurrent use; callers serialize access (see InferenceService).
"""

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from app.config import Settings

logger = logging.getLogger(__name__)


class LlamaCppBackend:
    """GGUF models through llama-cpp-python.

    The llama.cpp KV cache holds the activations of the last evaluated
    sequence. ``next_logits`` only evaluates the part of the context that
    differs from it, so successive calls within one generation cost one token
    each. No sliding window is applied: contexts longer than ``n_ctx`` fail.
    """

    name = "llama_cpp"

    def __init__(
        self,
        model_path: Path,
        n_ctx: int,
        n_threads: int,
        eos_token_id: int | None = None,
    ):
        # Import here to avoid loading llama_cpp if not needed
        from llama_cpp import Llama

        self._model = Llama(
            model_path=str(model_path),
            n_ctx=n_ctx,
            n_threads=n_threads,
            verbose=False,
        )
        self._eos_token_id = eos_token_id
        self._evaluated: list[int] = []

    @property
    def eos_token_id(self) -> int | None:
        if self._eos_token_id is not None:
            return self._eos_token_id
        return self._model.token_eos()

    @property
    def context_window(self) -> int:
        return self._model.n_ctx()

    def encode(self, text: str) -> list[int]:
        return self._model.tokenize(text.encode("utf-8"), add_bos=True)

    def decode(self, token_ids: Sequence[int]) -> str:
        # Incomplete multi-byte characters at the tail are dropped until the
        # token that completes them arrives.
        return self._model.detokenize(list(token_ids)).decode("utf-8", errors="ignore")

    def next_logits(self, context: Sequence[int]) -> np.ndarray:
        reused = 0
        for evaluated, token in zip(self._evaluated, context):
            if evaluated != token:
                break
            reused += 1
        # The last token is always evaluated so fresh logits exist for it.
        reused = min(reused, len(context) - 1)

        try:
            self._model.n_tokens = reused
            self._model.eval(list(context[reused:]))
        except Exception:
            self._model.reset()
            self._evaluated = []
            raise

        self._evaluated = list(context)
        # Without logits_all only the last position of the final batch has
        # logits; llama.cpp keeps them in its output buffer, not in `scores`.
        logits = self._model._ctx.get_logits()
        return np.ctypeslib.as_array(logits, shape=(self._model.n_vocab(),)).copy()

    def close(self) -> None:
        self._model.close()


class TransformersBackend:
    """Causal language models from a local Hugging Face checkpoint directory.

    Every call runs a full forward pass over the context, so no activation
    cache is shared between calls.
    """

    name = "transformers"

    def __init__(self, model_path: Path, eos_token_id: int | None = None):
        from transformers import AutoModelForCausalLM, AutoTokenizer

        self._tokenizer = AutoTokenizer.from_pretrained(str(model_path))
        self._model = AutoModelForCausalLM.from_pretrained(str(model_path))
        self._model.eval()
        self._eos_token_id = eos_token_id

    @property
    def eos_token_id(self) -> int | None:
        if self._eos_token_id is not None:
            return self._eos_token_id
        return self._tokenizer.eos_token_id

    @property
    def context_window(self) -> int | None:
        return getattr(self._model.config, "max_position_embeddings", None)

    def encode(self, text: str) -> list[int]:
        return self._tokenizer.encode(text)

    def decode(self, token_ids: Sequence[int]) -> str:
        return self._tokenizer.decode(list(token_ids), skip_special_tokens=True)

    def next_logits(self, context: Sequence[int]) -> np.ndarray:
        import torch

        input_ids = torch.tensor([list(context)], dtype=torch.long, device=self._model.device)
        with torch.no_grad():
            logits = self._model(input_ids).logits
        return logits[0, -1].float().cpu().numpy()

    def close(self) -> None:
        del self._model


BACKENDS = {
    LlamaCppBackend.name: lambda path, settings: LlamaCppBackend(
        path,
        n_ctx=settings.max_context_size,
        n_threads=settings.n_threads,
        eos_token_id=settings.eos_token_id,
    ),
    TransformersBackend.name: lambda path, settings: TransformersBackend(
        path,
        eos_token_id=settings.eos_token_id,
    ),
}


def create_backend(model_path: Path, settings: Settings):
    """Instantiate the backend named by ``settings.model_type``.

    Raises:
        ValueError: If the model type is unknown.
    """
    try:
        factory = BACKENDS[settings.model_type]
    except KeyError:
        raise ValueError(
            f"Unknown model type '{settings.model_type}'. "
            f"Expected one of: {', '.join(sorted(BACKENDS))}"
        ) from None

    logger.info(f"Creating {settings.model_type} backend for {model_path}")
    return factory(model_path, settings)
