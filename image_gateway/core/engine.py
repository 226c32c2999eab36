"""Process-wide image engine resource."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Optional, TypeVar

from PIL import Image

from image_gateway.api.config import MAX_IMAGE_PIXELS

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ImageEngine:
    """
    Owns the shared image processing resources.

    The engine is started once by the application lifespan and shut down once
    when the process stops. Transform work runs on its worker pool so that
    CPU-bound image operations do not block the event loop.
    """

    def __init__(
        self,
        concurrency: int = 8,
        max_image_pixels: Optional[int] = MAX_IMAGE_PIXELS,
        blocks_max: int = 200,
    ):
        """Initialize engine configuration; nothing is allocated until startup."""
        self.concurrency = concurrency
        self.max_image_pixels = max_image_pixels
        self.blocks_max = blocks_max
        self._executor: Optional[ThreadPoolExecutor] = None
        self._shut_down = False

    @property
    def running(self) -> bool:
        return self._executor is not None

    def startup(self) -> None:
        """Initialize Pillow and start the worker pool."""
        if self._shut_down:
            raise RuntimeError("Image engine cannot be restarted after shutdown")
        if self._executor is not None:
            raise RuntimeError("Image engine is already running")

        Image.init()
        Image.MAX_IMAGE_PIXELS = self.max_image_pixels
        Image.core.set_blocks_max(self.blocks_max)

        self._executor = ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="image-engine"
        )
        logger.info(
            f"Image engine started: concurrency={self.concurrency}, "
            f"max_pixels={self.max_image_pixels}, blocks_max={self.blocks_max}"
        )

    async def run(self, func: Callable[..., T], *args: Any) -> T:
        """
        Run a blocking image operation on the engine's worker pool.

        Args:
            func: Callable to execute
            *args: Positional arguments for the callable

        Returns:
            The callable's result

        Raises:
            RuntimeError: If the engine is not running
        """
        if self._executor is None:
            raise RuntimeError("Image engine is not running")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args))

    def shutdown(self) -> None:
        """Stop the worker pool, waiting for in-flight work."""
        if self._executor is None:
            logger.warning("Image engine shutdown requested but engine is not running")
            return

        self._executor.shutdown(wait=True)
        self._executor = None
        self._shut_down = True
        logger.info("Image engine shut down")
