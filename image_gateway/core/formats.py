"""Content type mapping and vector payload detection."""

from image_gateway.api.config import SNIFF_BYTES
from image_gateway.api.models import OutputFormat

SVG_CONTENT_TYPE = "image/svg+xml"

CONTENT_TYPES: dict[OutputFormat, str] = {
    OutputFormat.JPEG: "image/jpeg",
    OutputFormat.WEBP: "image/webp",
    OutputFormat.AVIF: "image/avif",
    OutputFormat.PNG: "image/png",
    OutputFormat.SVG: SVG_CONTENT_TYPE,
}


def content_type_for(output_format: OutputFormat) -> str:
    """Return the MIME type served for an output format."""
    return CONTENT_TYPES.get(output_format, "image/jpeg")


def is_svg(data: bytes) -> bool:
    """
    Detect SVG content from the start of a payload.

    Only the first SNIFF_BYTES bytes are inspected, case-insensitively.

    Args:
        data: Downloaded payload

    Returns:
        True if the payload looks like SVG markup
    """
    if len(data) < 5:
        return False

    prefix = data[:SNIFF_BYTES].decode("utf-8", errors="ignore").lower()

    return (
        "<svg" in prefix
        or "<!doctype svg" in prefix
        or ("<?xml" in prefix and "svg" in prefix)
    )
