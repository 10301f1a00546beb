from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.db.base import init_models
from app.core.logging import get_logger, setup_logging
from app.apis.flashcards.main import router as flashcards_router
from app.apis.admin.main import router as admin_router
from app.modules.flashcards.cache import TopicCache
from app.modules.generation.errors import (
    MalformedOutput,
    ProviderExhausted,
    ProviderFatal,
)
from app.modules.generation.retry import RetryState

import uvicorn
from fastapi.middleware.cors import CORSMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.database.auto_create:
        await init_models()
    app.state.topic_cache = TopicCache(
        max_size=settings.generation.topic_cache_size,
        ttl=settings.generation.topic_cache_ttl_seconds,
    )
    try:
        yield
    finally:
        app.state.topic_cache.clear()


async def provider_exhausted_handler(request: Request, exc: ProviderExhausted) -> JSONResponse:
    delay = settings.generation.retry_after_seconds
    logger.warning("All models exhausted for %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=429,
        headers={"Retry-After": str(delay)},
        content={
            "error": "all_models_rate_limited",
            "detail": str(exc),
            "attempted": exc.attempted,
            "retry_after": delay,
            "retry": RetryState().schedule(delay).to_dict(),
        },
    )


async def provider_fatal_handler(request: Request, exc: ProviderFatal) -> JSONResponse:
    logger.error("Provider failure for %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"error": "provider_error", "detail": str(exc), "model": exc.model},
    )


async def malformed_output_handler(request: Request, exc: MalformedOutput) -> JSONResponse:
    logger.error("Malformed model output for %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"error": "malformed_output", "detail": str(exc)},
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app.name, version=settings.app.version, lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ProviderExhausted, provider_exhausted_handler)
    app.add_exception_handler(ProviderFatal, provider_fatal_handler)
    app.add_exception_handler(MalformedOutput, malformed_output_handler)

    app.include_router(flashcards_router)
    app.include_router(admin_router)

    @app.get("/")
    async def root():
        return {
            "status": "ok",
            "app": settings.app.name,
            "version": settings.app.version,
        }

    return app


app = create_app()


if __name__ == "__main__":
    try:
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.app.port,
            reload=not settings.app.is_production,
        )
    except Exception as e:
        print(f"An error occurred when starting the server: {e}.")
