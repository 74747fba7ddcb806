"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from app.api.routes import router
from app.config import Settings, get_settings
from app.core.decoder import Decoder, DecoderConfig
from app.core.llm import LLMManager
from app.core.queue import RequestQueue
from app.services.inference import InferenceService

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_decoder(llm_manager: LLMManager, settings: Settings) -> Decoder:
    """Bind a decoder to the loaded backend with limits taken from settings."""
    backend = llm_manager.backend
    config = DecoderConfig(
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
        max_context_size=llm_manager.context_window,
        eos_token_id=llm_manager.eos_token_id,
    )
    return Decoder(backend, backend, config, seed=settings.seed)


def create_app(settings: Settings | None = None, backend=None) -> FastAPI:
    """Create the application.

    Args:
        settings: Settings to use instead of the environment.
        backend: A ready tokenizer/scorer backend, skipping model loading.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - loads model on startup."""
        app_settings = settings or get_settings()
        logger.info("Starting PorcelAIn service...")

        llm_manager = LLMManager(app_settings, backend=backend)
        try:
            llm_manager.load_model()
        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            logger.warning("Server starting without model!")

        decoder = build_decoder(llm_manager, app_settings) if llm_manager.is_loaded else None
        request_queue = RequestQueue(maxsize=app_settings.max_queue_size)
        inference_service = InferenceService(decoder, request_queue, app_settings)
        worker_task = asyncio.create_task(inference_service.run())
        logger.info(f"Inference service started (queue size: {app_settings.max_queue_size})")

        # Store in app state for access in routes
        app.state.llm_manager = llm_manager
        app.state.request_queue = request_queue
        app.state.inference_service = inference_service

        yield

        # Cleanup
        logger.info("Shutting down PorcelAIn service...")
        inference_service.stop()
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass

        llm_manager.unload_model()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="PorcelAIn",
        description="Minimal text generation API over a local LLM",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


configure_logging(get_settings().log_level)
app = create_app()


def run():
    """Run the server (entry point for CLI)."""
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    run()
