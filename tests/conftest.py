import threading

import numpy as np
import pytest

from app.config import Settings


class PieceTokenizer:
    """Greedy longest-match tokenizer over a fixed list of text pieces."""

    def __init__(self, vocab):
        self.vocab = list(vocab)
        self.encoded = []

    def encode(self, text):
        self.encoded.append(text)
        ids = []
        pos = 0
        while pos < len(text):
            match = max(
                (i for i, piece in enumerate(self.vocab) if piece and text.startswith(piece, pos)),
                key=lambda i: len(self.vocab[i]),
                default=None,
            )
            if match is None:
                raise KeyError(f"no token for {text[pos]!r}")
            ids.append(match)
            pos += len(self.vocab[match])
        return ids

    def decode(self, token_ids):
        return "".join(self.vocab[i] for i in token_ids)


class ScriptedScorer:
    """Makes the given tokens the argmax, in order, repeating the last one."""

    def __init__(self, vocab_size, tokens):
        self.vocab_size = vocab_size
        self.tokens = list(tokens)
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def next_logits(self, context):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.calls.append(list(context))
            step = min(len(self.calls) - 1, len(self.tokens) - 1)
            logits = np.zeros(self.vocab_size)
            logits[self.tokens[step]] = 10.0
            return logits
        finally:
            with self._lock:
                self.in_flight -= 1


class FailingScorer:
    def __init__(self, message="backend exploded"):
        self.message = message
        self.calls = 0

    def next_logits(self, context):
        self.calls += 1
        raise RuntimeError(self.message)


class FakeBackend:
    """Tokenizer and scorer bundled the way real backends are."""

    name = "fake"

    def __init__(self, tokenizer, scorer, eos_token_id=None, context_window=None):
        self.tokenizer = tokenizer
        self.scorer = scorer
        self.eos_token_id = eos_token_id
        self.context_window = context_window
        self.closed = False

    def encode(self, text):
        return self.tokenizer.encode(text)

    def decode(self, token_ids):
        return self.tokenizer.decode(token_ids)

    def next_logits(self, context):
        return self.scorer.next_logits(context)

    def close(self):
        self.closed = True


ABCD = ["A", "B", "C", "D"]


@pytest.fixture
def abcd_tokenizer():
    return PieceTokenizer(ABCD)


@pytest.fixture
def bcd_scorer():
    """Yields "B", "C", "D" after any prompt."""
    return ScriptedScorer(len(ABCD), [1, 2, 3])


@pytest.fixture
def make_settings(tmp_path):
    model_file = tmp_path / "model.gguf"
    model_file.write_bytes(b"\0" * (2 * 1024 * 1024))

    def _make(**overrides):
        values = {"model_path": str(model_file), "model_type": "fake"}
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make
