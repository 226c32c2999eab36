"""Transform API endpoint."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from slowapi.util import get_remote_address

from image_gateway.api.config import CACHE_CONTROL
from image_gateway.api.models import parse_transform_query
from image_gateway.core.auth import AuthorizationDeniedError, InvalidInputError, RequestAuthorizer
from image_gateway.core.downloader import PayloadTooLargeError, UpstreamFetchError
from image_gateway.core.pipeline import TransformPipeline, TransformResult
from image_gateway.core.ratelimit import RateLimiter
from image_gateway.core.transform import TransformError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_rate_limiter(request: Request) -> RateLimiter:
    """Get the process-wide rate limiter."""
    return request.app.state.rate_limiter


def get_authorizer(request: Request) -> RequestAuthorizer:
    """Get the request authorizer."""
    return request.app.state.authorizer


def get_pipeline(request: Request) -> TransformPipeline:
    """Get the transform pipeline."""
    return request.app.state.pipeline


@router.get("/transform")
async def transform_image(
    request: Request,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    authorizer: RequestAuthorizer = Depends(get_authorizer),
    pipeline: TransformPipeline = Depends(get_pipeline),
) -> Response:
    """
    Fetch, transform and serve a remote image.

    Query parameters: url, w, h, fit, f, q, crop, blur, sharpen, brightness,
    contrast, saturation, auto, grayscale (or bw), flip, rotate, bg, strip.
    """
    if not rate_limiter.check(get_remote_address(request)):
        return PlainTextResponse("Rate limit exceeded", status_code=429)

    params = request.query_params

    try:
        source_url = authorizer.authorize(params.get("url"))
        transform_request = parse_transform_query(params, url=source_url)
        result = await pipeline.run(transform_request)
        return _image_response(result)

    except InvalidInputError as e:
        return PlainTextResponse(str(e), status_code=400)

    except AuthorizationDeniedError as e:
        return PlainTextResponse(str(e), status_code=403)

    except PayloadTooLargeError as e:
        return PlainTextResponse(str(e), status_code=413)

    except UpstreamFetchError as e:
        return PlainTextResponse(f"Failed to download image: {e}", status_code=502)

    except TransformError as e:
        logger.error(f"Transform error: {e}")
        return PlainTextResponse(f"Failed to transform image: {e}", status_code=500)

    except Exception as e:
        logger.error(f"Unexpected error transforming image: {e}", exc_info=True)
        return PlainTextResponse("Internal server error", status_code=500)


def _image_response(result: TransformResult) -> Response:
    """
    Build the image response.

    Args:
        result: Pipeline output

    Returns:
        Response carrying the payload verbatim
    """
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={
            "X-Cache": "HIT" if result.cache_hit else "MISS",
            "Cache-Control": CACHE_CONTROL,
        },
    )


@router.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "time": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
    )
