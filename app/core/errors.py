"""Error taxonomy for text generation."""


class InvalidArgument(ValueError):
    """The request cannot be served as given (client error, never retried)."""


class TokenizerError(InvalidArgument):
    """The prompt could not be encoded."""


class GenerationError(RuntimeError):
    """Generation aborted; no partial output is returned."""


class ScorerError(GenerationError):
    """The scoring backend failed while producing logits."""


class GenerationCancelled(GenerationError):
    """Generation was cancelled between two scoring calls."""
