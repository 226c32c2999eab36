"""Request orchestration: cache lookup, fetch, transform and store."""

import logging
from dataclasses import dataclass

from image_gateway.api.models import TransformRequest
from image_gateway.core.cache import CachedArtifact, CacheService, CacheWriter, build_cache_key
from image_gateway.core.downloader import ImageDownloader
from image_gateway.core.engine import ImageEngine
from image_gateway.core.formats import SVG_CONTENT_TYPE, content_type_for, is_svg
from image_gateway.core.transform import ImageTransformer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformResult:
    """Image payload ready to be served."""

    data: bytes
    content_type: str
    cache_hit: bool


class TransformPipeline:
    """
    Turns a transform request into a cache hit or a fetch-transform-store cycle.

    Concurrent misses for the same key are not coordinated: each one fetches,
    transforms and stores independently. Stores of the same key are
    idempotent.
    """

    def __init__(
        self,
        cache_service: CacheService,
        cache_writer: CacheWriter,
        downloader: ImageDownloader,
        engine: ImageEngine,
        transformer: ImageTransformer,
    ):
        self.cache_service = cache_service
        self.cache_writer = cache_writer
        self.downloader = downloader
        self.engine = engine
        self.transformer = transformer

    async def run(self, request: TransformRequest) -> TransformResult:
        """
        Serve a transform request.

        Args:
            request: Normalized, already authorized transform request

        Returns:
            Payload, content type and cache status

        Raises:
            UpstreamFetchError: If the source cannot be fetched
            PayloadTooLargeError: If the source exceeds the size limit
            TransformError: If the image engine fails
        """
        cache_key = build_cache_key(request)

        cached = await self.cache_service.get(cache_key)
        if cached is not None:
            logger.info(f"Cache hit for {cache_key}")
            return TransformResult(cached.data, cached.content_type, cache_hit=True)

        logger.info(f"Cache miss for {cache_key}, fetching {request.url}")

        source = await self.downloader.fetch(request.url)

        if is_svg(source):
            logger.info(f"SVG source detected, passing through unchanged: {request.url}")
            artifact = CachedArtifact(source, SVG_CONTENT_TYPE)
        else:
            output = await self.engine.run(self.transformer.transform, source, request)
            artifact = CachedArtifact(output, content_type_for(request.format))

        self.cache_writer.schedule(cache_key, artifact)

        return TransformResult(artifact.data, artifact.content_type, cache_hit=False)
