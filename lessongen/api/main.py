"""FastAPI backend for lesson field generation."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lessongen.api.routes import (
    config_router,
    generation_error_handler,
    lesson_router,
    set_field_generator,
)
from lessongen.config import get_settings
from lessongen.exceptions import GenerationError
from lessongen.field_generator import FieldGenerator
from lessongen.image_client import ImageGenerationService
from lessongen.lesson_storage import LocalAssetStorage
from lessongen.llm_client import create_client_from_settings
from lessongen.logger import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()
    logger.info(
        "Starting Lesson Generation API",
        provider=settings.llm_provider,
        model=settings.llm_model,
        demo_mode=settings.demo_mode,
    )

    async with create_client_from_settings() as llm_client:
        async with ImageGenerationService() as image_service:
            set_field_generator(
                FieldGenerator(llm_client, image_service, LocalAssetStorage())
            )
            yield
            set_field_generator(None)

    logger.info("Shutting down Lesson Generation API")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Lesson Generation API",
        description="Dependency-aware AI generation of lesson fields",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GenerationError, generation_error_handler)

    app.include_router(lesson_router, prefix="/api/v1/lessons", tags=["Lessons"])
    app.include_router(config_router, prefix="/api/v1", tags=["Configuration"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "lesson-generation-api"}

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Lesson Generation API",
            "docs": "/docs",
            "health": "/health",
        }

    return app


# Create the FastAPI app instance
app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lessongen.api.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info"
    )
