"""Fetching source images from upstream origins."""

import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urlsplit

import httpx

from image_gateway.api.config import DOWNLOAD_TIMEOUT_SECONDS, MAX_IMAGE_SIZE_BYTES
from image_gateway.core.auth import is_domain_allowed

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Sec-Ch-Ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Sec-Fetch-Dest": "image",
    "Sec-Fetch-Mode": "no-cors",
    "Sec-Fetch-Site": "cross-site",
    "DNT": "1",
    "Connection": "keep-alive",
}


class UpstreamFetchError(Exception):
    """Raised when the source image cannot be fetched."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PayloadTooLargeError(Exception):
    """Raised when the source image exceeds the configured maximum size."""

    pass


def build_request_headers(url: str) -> dict[str, str]:
    """Browser-like request headers with Referer and Origin set to the target's origin."""
    parsed = urlsplit(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    headers = dict(BROWSER_HEADERS)
    headers["Referer"] = origin + "/"
    headers["Origin"] = origin
    return headers


class ImageDownloader:
    """Downloads source images over a shared connection pool."""

    def __init__(
        self,
        max_image_size: int = MAX_IMAGE_SIZE_BYTES,
        timeout_seconds: float = DOWNLOAD_TIMEOUT_SECONDS,
        connect_timeout_seconds: float = 10.0,
        max_connections: int = 100,
        max_keepalive_connections: int = 10,
        keepalive_expiry_seconds: float = 90.0,
        allowed_domains: Optional[list[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize downloader and its HTTP client."""
        self.max_image_size = max_image_size
        self.timeout_seconds = timeout_seconds
        self.allowed_domains = allowed_domains
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
                keepalive_expiry=keepalive_expiry_seconds,
            ),
            follow_redirects=True,
            transport=transport,
            event_hooks={"request": [self._check_host]},
        )

    async def fetch(self, url: str) -> bytes:
        """
        Fetch a source image with a single attempt.

        Args:
            url: Source image URL

        Returns:
            Response body

        Raises:
            UpstreamFetchError: On network failure, timeout or non-success status
            PayloadTooLargeError: If the body is larger than max_image_size
        """
        fetch_start = time.perf_counter()
        logger.info(f"Fetching source image: {url}")

        try:
            data = await asyncio.wait_for(self._read(url), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Timeout fetching {url} after {self.timeout_seconds}s")
            raise UpstreamFetchError(f"timeout after {self.timeout_seconds}s")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Error fetching {url}: {e}")
            raise UpstreamFetchError(f"network error: {e}") from e

        if len(data) > self.max_image_size:
            logger.error(
                f"Source image too large: more than {self.max_image_size} bytes from {url}"
            )
            raise PayloadTooLargeError("Image too large")

        logger.info(
            f"Fetched {len(data)} bytes from {url} "
            f"in {(time.perf_counter() - fetch_start) * 1000:.0f}ms"
        )
        return data

    async def _read(self, url: str) -> bytes:
        """Read at most max_image_size + 1 bytes of the response body."""
        limit = self.max_image_size + 1
        buffer = bytearray()

        async with self.client.stream("GET", url, headers=build_request_headers(url)) as response:
            if not response.is_success:
                logger.error(f"Upstream returned HTTP {response.status_code} for {url}")
                raise UpstreamFetchError(
                    f"bad status: {response.status_code}", status_code=response.status_code
                )

            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) >= limit:
                    break

        return bytes(buffer[:limit])

    async def _check_host(self, request: httpx.Request) -> None:
        """Refuse any request, redirects included, to a host outside the allow-list."""
        if self.allowed_domains is None:
            return
        host = request.url.host
        if not is_domain_allowed(host, self.allowed_domains):
            logger.warning(f"Refusing to follow redirect to disallowed host: {host}")
            raise UpstreamFetchError(f"redirect to disallowed host: {host}")

    async def aclose(self) -> None:
        """Close the HTTP client and its pooled connections."""
        await self.client.aclose()
