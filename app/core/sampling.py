"""Next-token selection: temperature scaling, softmax, nucleus (top-p) sampling."""

import numpy as np


def softmax(logits) -> np.ndarray:
    """Numerically stable softmax.

    The row maximum is subtracted before exponentiating so large-magnitude
    logits never overflow. Entries of ``-inf`` get probability zero.
    """
    scores = np.asarray(logits, dtype=np.float64)
    shifted = np.exp(scores - np.max(scores))
    return shifted / shifted.sum()


def greedy(logits) -> int:
    """Index of the maximum logit; ties go to the lowest index."""
    return int(np.argmax(np.asarray(logits, dtype=np.float64)))


def nucleus(probs: np.ndarray, top_p: float) -> tuple[np.ndarray, np.ndarray]:
    """Smallest most-probable prefix whose cumulative mass reaches ``top_p``.

    Args:
        probs: Probability distribution over the vocabulary.
        top_p: Cumulative probability threshold in (0, 1].

    Returns:
        Tuple of (token ids, renormalized probabilities), most likely first.
        Both arrays are empty when the distribution is degenerate.
    """
    order = np.argsort(-probs, kind="stable")
    cumulative = np.cumsum(probs[order])
    cutoff = int(np.searchsorted(cumulative, top_p, side="left"))
    keep = order[: min(cutoff, len(order) - 1) + 1]

    mass = probs[keep].sum()
    if not np.isfinite(mass) or mass <= 0:
        return keep[:0], probs[:0]
    return keep, probs[keep] / mass


def draw(token_ids: np.ndarray, probs: np.ndarray, rng: np.random.Generator) -> int:
    """Pick one id by comparing a uniform deviate to the cumulative distribution."""
    cdf = np.cumsum(probs)
    u = rng.random() * cdf[-1]
    index = int(np.searchsorted(cdf, u, side="right"))
    return int(token_ids[min(index, len(token_ids) - 1)])


def sample_token(
    logits,
    temperature: float,
    top_p: float,
    rng: np.random.Generator,
) -> int:
    """Select the next token id from a logit vector.

    ``temperature <= 0`` is greedy decoding. Otherwise logits are divided by
    the temperature, turned into probabilities and, when ``top_p < 1``,
    truncated to the nucleus before drawing. A distribution with no usable
    probability mass falls back to greedy selection.
    """
    if temperature <= 0:
        return greedy(logits)

    scores = np.asarray(logits, dtype=np.float64) / temperature
    probs = softmax(scores)
    if not np.all(np.isfinite(probs)):
        return greedy(scores)

    if top_p < 1.0:
        token_ids, probs = nucleus(probs, top_p)
        if len(token_ids) == 0:
            return greedy(scores)
    else:
        token_ids = np.arange(len(probs))

    return draw(token_ids, probs, rng)
