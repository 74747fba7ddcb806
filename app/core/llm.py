"""LLM manager for loading the model and exposing its tokenizer and scorer."""

import logging
from pathlib import Path

from app.config import Settings
from app.core.backends import create_backend

logger = logging.getLogger(__name__)


class LLMManager:
    """Owns the single long-lived backend instance for the process."""

    def __init__(self, settings: Settings, backend=None):
        """Initialize the LLM manager.

        Args:
            settings: Application settings.
            backend: An already constructed backend, used instead of loading
                one from ``settings.model_path``.
        """
        self.settings = settings
        self._backend = backend
        self._model_path: Path | None = None

    @property
    def is_loaded(self) -> bool:
        """Check if the model is loaded."""
        return self._backend is not None

    @property
    def backend(self):
        if self._backend is None:
            raise RuntimeError("Model not loaded")
        return self._backend

    @property
    def model_name(self) -> str:
        if self._backend is not None:
            return self._backend.name
        return self.settings.model_type

    @property
    def context_window(self) -> int:
        """Effective context size: the configured size capped by the backend's."""
        window = self.settings.max_context_size
        backend_window = getattr(self._backend, "context_window", None)
        if backend_window:
            window = min(window, backend_window)
        return window

    @property
    def eos_token_id(self) -> int | None:
        if self.settings.eos_token_id is not None:
            return self.settings.eos_token_id
        return getattr(self._backend, "eos_token_id", None)

    @property
    def model_size_mb(self) -> int:
        """Size of the model file, or of all files in a model directory."""
        path = self._model_path or self.settings.model_path_resolved
        if path.is_dir():
            size = sum(p.stat().st_size for p in path.rglob("*") if p.is_file())
        else:
            size = path.stat().st_size
        return size // (1024 * 1024)

    def resolve_model_path(self) -> Path:
        """Locate the model on disk.

        If the configured path doesn't exist, look for a file in the
        repository ``models/`` directory whose name matches ignoring case and
        punctuation (e.g. dot vs hyphen mistakes).

        Raises:
            FileNotFoundError: If no matching model exists.
        """
        model_path = Path(self.settings.model_path)
        if model_path.exists():
            return model_path

        repo_root = Path(__file__).resolve().parents[2]
        models_dir = (repo_root / "models").resolve()

        def _normalize(name: str) -> str:
            return "".join(ch.lower() for ch in name if ch.isalnum())

        target = _normalize(model_path.name)
        if target and models_dir.exists():
            for p in models_dir.iterdir():
                if _normalize(p.name) == target:
                    return p

        raise FileNotFoundError(f"Model not found at {model_path}")

    def load_model(self) -> None:
        """Load the backend named by ``settings.model_type``.

        Raises:
            FileNotFoundError: If the model doesn't exist.
            RuntimeError: If model loading fails.
        """
        if self._backend is not None:
            return

        model_path = self.resolve_model_path()

        try:
            logger.info(f"Loading model from {model_path}...")
            logger.info(f"  Backend: {self.settings.model_type}")
            logger.info(f"  Context size: {self.settings.max_context_size}")

            self._backend = create_backend(model_path, self.settings)
            self._model_path = model_path
            logger.info("Model loaded successfully!")

        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            raise RuntimeError(f"Failed to load model: {e}") from e

    def unload_model(self) -> None:
        """Unload the model from memory."""
        if self._backend is not None:
            close = getattr(self._backend, "close", None)
            if close:
                close()
            self._backend = None
            logger.info("Model unloaded")
