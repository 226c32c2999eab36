"""Image transformation: the fixed operation sequence and output encoding."""

import logging
import time
from contextlib import contextmanager
from io import BytesIO
from typing import Dict, Iterator, Optional, Tuple

import numpy as np
from PIL import Image, ImageColor, ImageFilter, ImageOps

from image_gateway.api.config import MAX_IMAGE_PIXELS
from image_gateway.api.models import (
    CropRect,
    FitMode,
    FlipMode,
    OutputFormat,
    TransformRequest,
)

logger = logging.getLogger(__name__)

ROTATIONS: Dict[int, Image.Transpose] = {
    # Pillow's ROTATE_* constants turn counter-clockwise.
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}

PIL_FORMATS: Dict[OutputFormat, str] = {
    OutputFormat.JPEG: "JPEG",
    OutputFormat.WEBP: "WEBP",
    OutputFormat.AVIF: "AVIF",
    OutputFormat.PNG: "PNG",
}

AUTO_SHARPEN = ImageFilter.UnsharpMask(radius=1.0, percent=120, threshold=1)
WHITE = (255, 255, 255)


class TransformError(Exception):
    """Raised when any stage of the transform fails."""

    pass


@contextmanager
def _stage(name: str) -> Iterator[None]:
    """Wrap a pipeline stage so that any failure surfaces as TransformError."""
    try:
        yield
    except TransformError:
        raise
    except Exception as e:
        raise TransformError(f"failed to {name}: {e}") from e


class ImageTransformer:
    """
    Applies a TransformRequest to encoded image bytes.

    Operations run in a fixed order because several of them do not commute:
    orientation, rotation, flip, resize, crop, sharpening, blur, grayscale,
    brightness, contrast, saturation, then encoding.
    """

    def __init__(self, max_output_pixels: Optional[int] = MAX_IMAGE_PIXELS):
        """Initialize transformer with the largest output area a resize may produce."""
        self.max_output_pixels = max_output_pixels

    def transform(self, data: bytes, request: TransformRequest) -> bytes:
        """
        Run the full operation sequence.

        Args:
            data: Source image bytes
            request: Normalized transform request

        Returns:
            Encoded output image

        Raises:
            TransformError: If any stage fails
        """
        start_time = time.time()

        with _stage("load image"):
            image = Image.open(BytesIO(data))
            image.load()

        with _stage("auto-rotate"):
            image = ImageOps.exif_transpose(image)

        exif = image.info.get("exif")
        icc_profile = image.info.get("icc_profile")

        with _stage("normalize colors"):
            image = self._normalize_mode(image)

        if request.rotate in ROTATIONS:
            with _stage("rotate"):
                image = image.transpose(ROTATIONS[request.rotate])

        if request.flip != FlipMode.NONE:
            with _stage("flip"):
                image = self._flip(image, request.flip)

        if request.width > 0 or request.height > 0:
            with _stage("resize"):
                image = self._resize(image, request.width, request.height, request.fit)

        if request.crop is not None:
            with _stage("crop"):
                image = self._crop(image, request.crop)

        if request.auto_optimize:
            with _stage("auto-sharpen"):
                image = image.filter(AUTO_SHARPEN)

        if request.sharpen > 0:
            with _stage("sharpen"):
                image = image.filter(
                    ImageFilter.UnsharpMask(
                        radius=1.0, percent=int(round(request.sharpen * 100)), threshold=1
                    )
                )

        if request.blur > 0:
            with _stage("blur"):
                image = image.filter(ImageFilter.GaussianBlur(radius=request.blur))

        if request.grayscale:
            with _stage("convert to grayscale"):
                image = image.convert("LA" if image.mode == "RGBA" else "L")

        if request.brightness != 0:
            with _stage("adjust brightness"):
                image = _linear(image, 1.0 + request.brightness / 100.0, 0.0)

        if request.contrast != 1.0:
            with _stage("adjust contrast"):
                image = _linear(image, request.contrast, 128.0 * (1.0 - request.contrast))

        if request.saturation != 1.0 and image.mode in ("RGB", "RGBA"):
            with _stage("adjust saturation"):
                image = _saturate(image, request.saturation)

        with _stage("export image"):
            output = self._encode(image, request, exif, icc_profile)

        logger.info(
            f"Transformed image: {image.width}x{image.height} {request.format.value}, "
            f"{len(output) / 1024:.1f}KB, time: {int((time.time() - start_time) * 1000)}ms"
        )

        return output

    def _normalize_mode(self, image: Image.Image) -> Image.Image:
        """Convert to RGB, or RGBA when the source carries transparency."""
        has_alpha = "A" in image.getbands() or "transparency" in image.info
        target = "RGBA" if has_alpha else "RGB"
        if image.mode != target:
            image = image.convert(target)
        return image

    def _flip(self, image: Image.Image, flip: FlipMode) -> Image.Image:
        if flip in (FlipMode.HORIZONTAL, FlipMode.BOTH):
            image = image.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
        if flip in (FlipMode.VERTICAL, FlipMode.BOTH):
            image = image.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
        return image

    def _resize(
        self, image: Image.Image, width: int, height: int, fit: FitMode
    ) -> Image.Image:
        """
        Scale to the requested box.

        With both dimensions, "none" fits the image inside the box while
        "cover" and "attention" fill it and crop the overflow. With a single
        dimension the image is scaled proportionally.
        """
        src_width, src_height = image.size
        crop_to_box = width > 0 and height > 0 and fit != FitMode.NONE

        if width > 0 and height > 0:
            ratios = (width / src_width, height / src_height)
            scale = max(ratios) if crop_to_box else min(ratios)
        elif width > 0:
            scale = width / src_width
        else:
            scale = height / src_height

        new_size = (max(1, round(src_width * scale)), max(1, round(src_height * scale)))
        if self.max_output_pixels and new_size[0] * new_size[1] > self.max_output_pixels:
            raise TransformError(
                f"failed to resize: {new_size[0]}x{new_size[1]} exceeds "
                f"{self.max_output_pixels} pixels"
            )
        if new_size != image.size:
            image = image.resize(new_size, Image.Resampling.LANCZOS)

        if not crop_to_box:
            return image

        crop_width = min(width, image.width)
        crop_height = min(height, image.height)

        if fit == FitMode.ATTENTION:
            left, top = _attention_offset(image, crop_width, crop_height)
        else:
            left = (image.width - crop_width) // 2
            top = (image.height - crop_height) // 2

        return image.crop((left, top, left + crop_width, top + crop_height))

    def _crop(self, image: Image.Image, crop: CropRect) -> Image.Image:
        if crop.x + crop.width > image.width or crop.y + crop.height > image.height:
            raise TransformError(
                f"failed to crop: area {crop.x},{crop.y},{crop.width},{crop.height} "
                f"is outside {image.width}x{image.height} image"
            )
        return image.crop((crop.x, crop.y, crop.x + crop.width, crop.y + crop.height))

    def _encode(
        self,
        image: Image.Image,
        request: TransformRequest,
        exif: Optional[bytes],
        icc_profile: Optional[bytes],
    ) -> bytes:
        """Encode with format-specific optimizations."""
        output_format = PIL_FORMATS.get(request.format, "JPEG")
        buffer = BytesIO()

        if output_format == "JPEG" and image.mode in ("RGBA", "LA"):
            image = _flatten(image, request.background)
        elif output_format in ("WEBP", "AVIF") and image.mode in ("L", "LA"):
            image = image.convert("RGBA" if image.mode == "LA" else "RGB")

        # Drop anything carried over from the source; metadata is only
        # written back explicitly below.
        image.info = {}

        save_kwargs: Dict[str, object] = {}
        if not request.strip:
            if exif:
                save_kwargs["exif"] = exif
            if icc_profile:
                save_kwargs["icc_profile"] = icc_profile

        if output_format == "JPEG":
            save_kwargs["quality"] = request.quality
            save_kwargs["optimize"] = True
            save_kwargs["progressive"] = True
        elif output_format == "WEBP":
            save_kwargs["quality"] = request.quality
            save_kwargs["method"] = 4
            save_kwargs["lossless"] = request.quality == 100
        elif output_format == "AVIF":
            save_kwargs["quality"] = request.quality
            save_kwargs["speed"] = 6
        elif output_format == "PNG":
            save_kwargs["compress_level"] = 6

        image.save(buffer, format=output_format, **save_kwargs)
        return buffer.getvalue()


def _split_alpha(image: Image.Image) -> Tuple[Image.Image, Optional[Image.Image]]:
    if image.mode in ("RGBA", "LA"):
        return image.convert(image.mode[:-1]), image.getchannel("A")
    return image, None


def _linear(image: Image.Image, multiplier: float, offset: float) -> Image.Image:
    """Apply ``x * multiplier + offset`` to the color bands, leaving alpha alone."""
    color, alpha = _split_alpha(image)
    values = np.asarray(color, dtype=np.float32) * multiplier + offset
    result = Image.fromarray(np.clip(np.rint(values), 0, 255).astype(np.uint8))
    if alpha is not None:
        result.putalpha(alpha)
    return result


def _saturate(image: Image.Image, factor: float) -> Image.Image:
    """Scale the chroma channels of YCbCr around their neutral value."""
    color, alpha = _split_alpha(image)
    luma, blue, red = color.convert("YCbCr").split()

    def scale(channel: Image.Image) -> Image.Image:
        values = (np.asarray(channel, dtype=np.float32) - 128.0) * factor + 128.0
        return Image.fromarray(np.clip(np.rint(values), 0, 255).astype(np.uint8))

    result = Image.merge("YCbCr", (luma, scale(blue), scale(red))).convert("RGB")
    if alpha is not None:
        result.putalpha(alpha)
    return result


def _flatten(image: Image.Image, background: str) -> Image.Image:
    """Composite an image with alpha onto a solid background color."""
    fill = ImageColor.getrgb(f"#{background}") if background else WHITE
    flattened = Image.new("RGB", image.size, fill[:3])
    flattened.paste(image.convert("RGBA"), mask=image.getchannel("A"))
    return flattened


def _attention_offset(image: Image.Image, width: int, height: int) -> Tuple[int, int]:
    """
    Pick the crop window with the most visual interest.

    Interest is scored per pixel as edge strength (absolute neighbour
    differences of the luminance) plus chroma (spread between the strongest
    and weakest color band). The image already covers the target box, so the
    window only slides along the axis that overflows.
    """
    gray = np.asarray(image.convert("L"), dtype=np.float32)
    saliency = np.zeros_like(gray)
    saliency[:, 1:] += np.abs(np.diff(gray, axis=1))
    saliency[1:, :] += np.abs(np.diff(gray, axis=0))

    rgb = np.asarray(image.convert("RGB"), dtype=np.float32)
    saliency += rgb.max(axis=2) - rgb.min(axis=2)

    left = _best_window(saliency.sum(axis=0), width)
    top = _best_window(saliency.sum(axis=1), height)
    return left, top


def _best_window(profile: np.ndarray, size: int) -> int:
    """Start of the highest-scoring window; ties go to the most central one."""
    slack = len(profile) - size
    if slack <= 0:
        return 0

    cumulative = np.concatenate(([0.0], np.cumsum(profile, dtype=np.float64)))
    sums = cumulative[size:] - cumulative[:-size]
    best = np.flatnonzero(sums >= sums.max() - 1e-6)
    center = slack / 2
    return int(best[np.argmin(np.abs(best - center))])
