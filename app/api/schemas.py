"""Pydantic schemas for API request/response models."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys; accepts either case on input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


class GenerateRequest(CamelModel):
    """Request model for text generation."""

    prompt: str = Field(
        ...,
        description="The input prompt for the LLM",
        min_length=1,
        examples=["What is the capital of France?"],
    )
    max_tokens: int = Field(
        default=100,
        description="Maximum number of tokens to generate",
        ge=1,
    )
    temperature: float | None = Field(
        default=None,
        description="Sampling temperature, 0 for greedy decoding (uses server default if not specified)",
        ge=0.0,
    )
    top_p: float = Field(
        default=0.9,
        description="Top-p (nucleus) sampling parameter",
        gt=0.0,
        le=1.0,
    )
    stop_sequences: list[str] | None = Field(
        default=None,
        description="Stop sequences to end generation",
    )


class GenerateResponse(CamelModel):
    """Response model for text generation."""

    text: str = Field(..., description="The generated text, prompt excluded")
    tokens_generated: int = Field(..., description="Number of tokens generated")
    processing_time_ms: float = Field(..., description="Wall time spent generating")


class HealthResponse(CamelModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service status")
    model: str = Field(..., description="Backend serving the model")
    model_path: str = Field(..., description="Path to the model")
    queue_size: int = Field(default=0, description="Number of requests waiting in queue")


class InfoResponse(CamelModel):
    """Response model for model information."""

    type: str = Field(..., description="Backend serving the model")
    path: str = Field(..., description="Path to the model")
    max_tokens: int = Field(..., description="Server-side ceiling on maxTokens")
    context_window: int = Field(..., description="Context window in tokens")
    model_size_mb: int = Field(..., alias="modelSizeMB", description="Model size on disk in MiB")
    temperature: float = Field(..., description="Default sampling temperature")


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(..., description="Error message")
