"""Configuration settings using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Model Configuration
    model_path: str = "models/model.gguf"
    model_type: str = "llama_cpp"  # llama_cpp | transformers

    # Generation Settings
    max_tokens: int = 2048  # Ceiling for per-request maxTokens
    temperature: float = 0.7  # Used when a request omits temperature
    max_context_size: int = 2048  # Context window in tokens
    n_threads: int = 4  # CPU threads for llama.cpp
    eos_token_id: int | None = None  # Overrides the backend's EOS token
    seed: int | None = None  # Sampler seed, OS entropy when unset

    # Prompt formatting
    system_prompt: str | None = None
    prompt_template: str = "{prompt}"
    # Template markers that end generation and are stripped from the output,
    # e.g. STOP_MARKERS='["<|end|>", "<|user|>"]'
    stop_markers: list[str] = []

    # Concurrency Settings
    # One generation runs at a time per loaded model; the rest wait here.
    max_queue_size: int = 100

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @field_validator("prompt_template")
    @classmethod
    def check_prompt_template(cls, template: str) -> str:
        """Reject templates with placeholders other than {prompt} and {system}."""
        try:
            template.format(prompt="", system="")
        except (AttributeError, KeyError, IndexError, ValueError) as e:
            raise ValueError(f"Invalid prompt_template {template!r}: {e!r}") from e
        return template

    @property
    def model_path_resolved(self) -> Path:
        """Get the resolved model path."""
        return Path(self.model_path).resolve()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
