"""API route definitions."""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request, status

from app.api.schemas import (
    ErrorResponse,
    GenerateRequest,
    GenerateResponse,
    HealthResponse,
    InfoResponse,
)
from app.core.errors import GenerationError, InvalidArgument

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="Health check endpoint",
)
async def health_check(request: Request) -> HealthResponse:
    """Check the health status of the service."""
    llm_manager = request.app.state.llm_manager
    request_queue = request.app.state.request_queue

    return HealthResponse(
        status="healthy" if llm_manager.is_loaded else "unhealthy",
        model=llm_manager.model_name,
        model_path=llm_manager.settings.model_path,
        queue_size=request_queue.size,
    )


@router.get(
    "/info",
    response_model=InfoResponse,
    responses={500: {"model": ErrorResponse, "description": "Model file unreadable"}},
    tags=["Health"],
    summary="Model information",
)
async def model_info(request: Request) -> InfoResponse:
    """Describe the served model and the generation defaults."""
    llm_manager = request.app.state.llm_manager
    settings = llm_manager.settings

    try:
        size_mb = llm_manager.model_size_mb
    except OSError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get model info: {e}",
        )

    return InfoResponse(
        type=llm_manager.model_name,
        path=settings.model_path,
        max_tokens=settings.max_tokens,
        context_window=llm_manager.context_window,
        model_size_mb=size_mb,
        temperature=settings.temperature,
    )


@router.post(
    "/generate",
    response_model=GenerateResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Prompt cannot be processed"},
        500: {"model": ErrorResponse, "description": "Generation failed"},
        503: {"model": ErrorResponse, "description": "Model not loaded or queue full"},
    },
    tags=["Generation"],
    summary="Generate text from prompt",
)
async def generate(request: Request, body: GenerateRequest) -> GenerateResponse:
    """Generate a continuation of the given prompt."""
    inference_service = request.app.state.inference_service

    if not inference_service.is_ready:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Model not loaded. Check the model path and restart the server.",
        )

    try:
        generation_request = inference_service.prepare(
            prompt=body.prompt,
            max_tokens=body.max_tokens,
            temperature=body.temperature,
            top_p=body.top_p,
            stop_sequences=body.stop_sequences,
        )
        result = await inference_service.generate(
            generation_request,
            is_disconnected=request.is_disconnected,
        )
    except InvalidArgument as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except asyncio.QueueFull:
        logger.warning("Request rejected: inference queue is full")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Too many pending requests, try again later.",
        )
    except GenerationError as e:
        logger.error(f"Generation error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Text generation failed: {e}",
        )

    return GenerateResponse(
        text=result.text,
        tokens_generated=result.tokens_generated,
        processing_time_ms=result.processing_time_ms,
    )
