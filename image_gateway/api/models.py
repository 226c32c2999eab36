"""API request models and query parsing."""

import math
import re
from enum import Enum
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from image_gateway.api.config import DEFAULT_QUALITY, FLOAT_PRECISION

_HEX_COLOR = re.compile(r"^(?:[0-9a-f]{3}|[0-9a-f]{6})$")
_TRUE_VALUES = ("true", "1")


class FitMode(str, Enum):
    """How a source aspect ratio is reconciled with the requested box."""

    NONE = "none"
    COVER = "cover"
    ATTENTION = "attention"


class OutputFormat(str, Enum):
    """Encoded output format."""

    JPEG = "jpeg"
    WEBP = "webp"
    AVIF = "avif"
    PNG = "png"
    SVG = "svg"


class FlipMode(str, Enum):
    """Mirror axis."""

    NONE = "none"
    HORIZONTAL = "h"
    VERTICAL = "v"
    BOTH = "both"


def round_adjustment(value: float) -> float:
    """Round a float adjustment to FLOAT_PRECISION decimals, folding -0.0 into 0.0."""
    return round(value, FLOAT_PRECISION) + 0.0


class CropRect(BaseModel):
    """Rectangle extracted after resizing."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(..., ge=0)
    y: int = Field(..., ge=0)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class TransformRequest(BaseModel):
    """Normalized parameters of one transform request."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="Source image URL")
    width: int = Field(default=0, ge=0, description="Target width, 0 = unconstrained")
    height: int = Field(default=0, ge=0, description="Target height, 0 = unconstrained")
    fit: FitMode = Field(default=FitMode.COVER)
    format: OutputFormat = Field(default=OutputFormat.JPEG)
    quality: int = Field(default=DEFAULT_QUALITY, ge=1, le=100)
    crop: Optional[CropRect] = None
    blur: int = Field(default=0, ge=0, description="Gaussian blur radius")
    sharpen: float = Field(default=0.0, ge=0.0)
    brightness: float = Field(default=0.0, description="-100 to 100, 0 = unchanged")
    contrast: float = Field(default=1.0, description="1.0 = unchanged")
    saturation: float = Field(default=1.0, description="1.0 = unchanged")
    auto_optimize: bool = False
    grayscale: bool = False
    flip: FlipMode = FlipMode.NONE
    rotate: int = Field(default=0, description="Clockwise rotation: 0, 90, 180 or 270")
    background: str = Field(default="", description="Hex color used to flatten alpha")
    strip: bool = True

    @field_validator("sharpen", "brightness", "contrast", "saturation")
    @classmethod
    def round_adjustments(cls, value: float) -> float:
        """Round to the precision the cache key distinguishes."""
        return round_adjustment(value)


def parse_transform_query(params: Mapping[str, str], url: str) -> TransformRequest:
    """
    Build a TransformRequest from raw query parameters.

    Parsing is lenient: malformed values fall back to their defaults instead
    of rejecting the request.

    Args:
        params: Query parameters of the inbound request
        url: Source URL already resolved by the authorizer

    Returns:
        Normalized transform request
    """
    quality = _parse_int(params.get("q"))
    if quality <= 0 or quality > 100:
        quality = DEFAULT_QUALITY

    rotate = _parse_int(params.get("rotate"))
    if rotate not in (90, 180, 270):
        rotate = 0

    return TransformRequest(
        url=url,
        width=max(0, _parse_int(params.get("w"))),
        height=max(0, _parse_int(params.get("h"))),
        fit=_parse_fit(params.get("fit")),
        format=_parse_format(params.get("f")),
        quality=quality,
        crop=_parse_crop(params.get("crop")),
        blur=max(0, _parse_int(params.get("blur"))),
        sharpen=max(0.0, round_adjustment(_parse_float(params.get("sharpen")))),
        brightness=round_adjustment(_parse_float(params.get("brightness"))),
        # Zero means unset; checked after rounding so 0.004 is unset too.
        contrast=round_adjustment(_parse_float(params.get("contrast"))) or 1.0,
        saturation=round_adjustment(_parse_float(params.get("saturation"))) or 1.0,
        auto_optimize=_parse_flag(params.get("auto")),
        grayscale=_parse_flag(params.get("grayscale")) or _parse_flag(params.get("bw")),
        flip=_parse_flip(params.get("flip")),
        rotate=rotate,
        background=_parse_background(params.get("bg")),
        strip=(params.get("strip") or "").lower() not in ("false", "0"),
    )


def _parse_int(value: Optional[str]) -> int:
    """Parse an integer, returning 0 for missing or malformed input."""
    if not value:
        return 0
    try:
        return int(value.strip())
    except ValueError:
        return 0


def _parse_float(value: Optional[str]) -> float:
    """Parse a finite float, returning 0.0 for missing or malformed input."""
    if not value:
        return 0.0
    try:
        number = float(value.strip())
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _parse_flag(value: Optional[str]) -> bool:
    return (value or "").lower() in _TRUE_VALUES


def _parse_fit(value: Optional[str]) -> FitMode:
    if not value:
        return FitMode.COVER
    try:
        return FitMode(value.lower())
    except ValueError:
        return FitMode.NONE


def _parse_format(value: Optional[str]) -> OutputFormat:
    fmt = (value or "").lower()
    if fmt == "jpg":
        return OutputFormat.JPEG
    if fmt in ("webp", "avif", "png"):
        return OutputFormat(fmt)
    return OutputFormat.JPEG


def _parse_flip(value: Optional[str]) -> FlipMode:
    try:
        return FlipMode((value or "").lower())
    except ValueError:
        return FlipMode.NONE


def _parse_crop(value: Optional[str]) -> Optional[CropRect]:
    """Parse an 'x,y,w,h' rectangle; anything malformed is ignored."""
    if not value:
        return None
    parts = value.split(",")
    if len(parts) != 4:
        return None
    try:
        x, y, width, height = (int(part.strip()) for part in parts)
    except ValueError:
        return None
    if x < 0 or y < 0 or width <= 0 or height <= 0:
        return None
    return CropRect(x=x, y=y, width=width, height=height)


def _parse_background(value: Optional[str]) -> str:
    color = (value or "").strip().lstrip("#").lower()
    return color if _HEX_COLOR.match(color) else ""
