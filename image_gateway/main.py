"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from image_gateway.api.config import Settings, settings
from image_gateway.api.routes import transform
from image_gateway.core.auth import RequestAuthorizer
from image_gateway.core.cache import CacheService, CacheWriter, LRUCache
from image_gateway.core.downloader import ImageDownloader
from image_gateway.core.engine import ImageEngine
from image_gateway.core.pipeline import TransformPipeline
from image_gateway.core.ratelimit import RateLimiter
from image_gateway.core.transform import ImageTransformer
from image_gateway.utils.logging_config import configure_logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "Image Transformation Gateway"
SERVICE_VERSION = "1.0.0"


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Args:
        app_settings: Configuration to use instead of the environment settings

    Returns:
        Configured FastAPI application
    """
    config = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Create shared resources on startup and release them on shutdown."""
        configure_logging(log_level=config.log_level, log_format=config.log_format)
        logger.info("Starting application...")
        logger.info(f"Allowed domains: {config.allowed_domains_list}")

        engine = ImageEngine(
            concurrency=config.engine_concurrency,
            max_image_pixels=config.engine_max_image_pixels,
            blocks_max=config.engine_blocks_max,
        )
        engine.startup()

        downloader = ImageDownloader(
            max_image_size=config.max_image_size,
            timeout_seconds=config.download_timeout_seconds,
            connect_timeout_seconds=config.download_connect_timeout_seconds,
            max_connections=config.download_max_connections,
            max_keepalive_connections=config.download_max_keepalive_connections,
            keepalive_expiry_seconds=config.download_keepalive_expiry_seconds,
            allowed_domains=config.allowed_domains_list,
        )
        cache_service = CacheService(
            LRUCache(max_size_mb=config.cache_max_size_mb, ttl_seconds=config.cache_ttl)
        )
        cache_writer = CacheWriter(cache_service)

        app.state.rate_limiter = RateLimiter(
            rate=config.rate_limit,
            enabled=config.rate_limit_enabled,
            sweep_interval=config.rate_limit_idle_sweep_seconds,
        )
        app.state.authorizer = RequestAuthorizer(config.allowed_domains_list)
        app.state.cache_service = cache_service
        app.state.pipeline = TransformPipeline(
            cache_service=cache_service,
            cache_writer=cache_writer,
            downloader=downloader,
            engine=engine,
            transformer=ImageTransformer(max_output_pixels=config.engine_max_image_pixels),
        )
        logger.info("Application started successfully")

        try:
            yield
        finally:
            logger.info("Shutting down application...")
            await cache_writer.drain()
            await downloader.aclose()
            engine.shutdown()
            logger.info("Application shut down successfully")

    app = FastAPI(
        title=SERVICE_NAME,
        description="On-demand remote image transformation with caching",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    app.include_router(transform.router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "image_gateway.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
