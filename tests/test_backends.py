import ctypes

import numpy as np
import pytest

from app.core.backends import LlamaCppBackend, TransformersBackend


class RecordingContext:
    """llama.cpp context whose output buffer holds one row of logits."""

    def __init__(self, n_vocab):
        self.buffer = (ctypes.c_float * n_vocab)()

    def get_logits(self):
        return ctypes.cast(self.buffer, ctypes.POINTER(ctypes.c_float))


class RecordingLlama:
    """Mimics the parts of llama_cpp.Llama the backend touches.

    Like the real library without ``logits_all``, ``eval`` leaves ``scores``
    untouched and only fills the context's last-position logits.
    """

    def __init__(self, n_vocab=5, n_batch=4):
        self.n_tokens = 0
        self.scores = np.full((n_batch, n_vocab), np.nan, dtype=np.single)
        self._ctx = RecordingContext(n_vocab)
        self._n_vocab = n_vocab
        self.evaluated = []
        self.fail_next = False
        self.resets = 0

    def n_vocab(self):
        return self._n_vocab

    def eval(self, tokens):
        if self.fail_next:
            raise RuntimeError("llama_decode returned -1")
        self.evaluated.append(list(tokens))
        self.n_tokens += len(tokens)
        for i in range(self._n_vocab):
            self._ctx.buffer[i] = float(self.n_tokens)

    def reset(self):
        self.n_tokens = 0
        self.resets += 1


@pytest.fixture
def llama_backend():
    backend = LlamaCppBackend.__new__(LlamaCppBackend)
    backend._model = RecordingLlama()
    backend._eos_token_id = None
    backend._evaluated = []
    return backend


def test_next_logits_only_evaluates_new_suffix(llama_backend):
    first = llama_backend.next_logits([1, 2, 3])
    second = llama_backend.next_logits([1, 2, 3, 4])

    assert llama_backend._model.evaluated == [[1, 2, 3], [4]]
    assert first.tolist() == [3.0] * 5
    assert second.tolist() == [4.0] * 5


def test_next_logits_reevaluates_after_divergence(llama_backend):
    llama_backend.next_logits([1, 2, 3, 4])
    llama_backend.next_logits([1, 2, 9])

    assert llama_backend._model.evaluated[-1] == [9]
    assert llama_backend._model.n_tokens == 3


def test_identical_context_reevaluates_last_token(llama_backend):
    llama_backend.next_logits([1, 2])
    llama_backend.next_logits([1, 2])

    assert llama_backend._model.evaluated == [[1, 2], [2]]


def test_returned_logits_are_a_copy(llama_backend):
    logits = llama_backend.next_logits([1])
    llama_backend._model._ctx.buffer[0] = -1.0

    assert logits.tolist() == [1.0] * 5


def test_eval_failure_resets_cache(llama_backend):
    llama_backend.next_logits([1, 2])
    llama_backend._model.fail_next = True

    with pytest.raises(RuntimeError, match="llama_decode"):
        llama_backend.next_logits([1, 2, 3])

    assert llama_backend._model.resets == 1
    assert llama_backend._evaluated == []


def test_logits_past_batch_size_come_from_context(llama_backend):
    context = list(range(10))
    logits = None
    for end in range(1, len(context) + 1):
        logits = llama_backend.next_logits(context[:end])

    assert llama_backend._model.n_tokens == 10
    assert logits.tolist() == [10.0] * 5
    assert np.all(np.isnan(llama_backend._model.scores))


class StubHFTokenizer:
    eos_token_id = 0

    def encode(self, text):
        return [ord(c) - ord("a") + 1 for c in text]

    def decode(self, token_ids, skip_special_tokens=False):
        return "".join(chr(i + ord("a") - 1) for i in token_ids if not (skip_special_tokens and i == 0))


class StubCausalLM:
    """Scores token ``len(context) % vocab`` highest at the last position."""

    def __init__(self, torch, vocab_size=6):
        self.torch = torch
        self.vocab_size = vocab_size
        self.device = torch.device("cpu")
        self.config = type("Config", (), {"max_position_embeddings": 64})()
        self.inputs = []

    def __call__(self, input_ids):
        self.inputs.append(input_ids.tolist())
        length = input_ids.shape[1]
        logits = self.torch.zeros((1, length, self.vocab_size), dtype=self.torch.bfloat16)
        logits[0, -1, length % self.vocab_size] = 5.0
        return type("Output", (), {"logits": logits})()


@pytest.fixture
def hf_backend():
    torch = pytest.importorskip("torch")
    backend = TransformersBackend.__new__(TransformersBackend)
    backend._tokenizer = StubHFTokenizer()
    backend._model = StubCausalLM(torch)
    backend._eos_token_id = None
    return backend


def test_transformers_next_logits_uses_last_position(hf_backend):
    logits = hf_backend.next_logits([1, 2, 3])

    assert hf_backend._model.inputs == [[[1, 2, 3]]]
    assert logits.dtype == np.float32
    assert logits.shape == (6,)
    assert int(np.argmax(logits)) == 3


def test_transformers_tokenizer_and_metadata(hf_backend):
    assert hf_backend.encode("abc") == [1, 2, 3]
    assert hf_backend.decode([1, 0, 2]) == "ab"
    assert hf_backend.eos_token_id == 0
    assert hf_backend.context_window == 64

    hf_backend._eos_token_id = 4
    assert hf_backend.eos_token_id == 4
