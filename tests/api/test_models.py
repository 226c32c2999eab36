"""Tests for API models and query parsing."""

import pytest
from pydantic import ValidationError

from image_gateway.api.models import (
    CropRect,
    FitMode,
    FlipMode,
    OutputFormat,
    TransformRequest,
    parse_transform_query,
)

URL = "https://example.com/a.jpg"


class TestTransformRequest:
    """Test transform request model."""

    def test_defaults(self) -> None:
        """Test default values."""
        request = TransformRequest(url=URL)

        assert request.quality == 80
        assert request.contrast == 1.0
        assert request.saturation == 1.0
        assert request.strip is True
        assert request.crop is None

    def test_quality_validation(self) -> None:
        """Test quality must be within 1-100."""
        with pytest.raises(ValidationError):
            TransformRequest(url=URL, quality=101)

    def test_frozen(self) -> None:
        """Test requests are immutable."""
        request = TransformRequest(url=URL)
        with pytest.raises(ValidationError):
            request.width = 10  # type: ignore[misc]


class TestParseTransformQuery:
    """Test lenient query parsing."""

    def test_empty_query(self) -> None:
        """Test defaults for an empty query."""
        request = parse_transform_query({}, url=URL)

        assert request.url == URL
        assert request.width == 0
        assert request.height == 0
        assert request.fit == FitMode.COVER
        assert request.format == OutputFormat.JPEG
        assert request.quality == 80
        assert request.flip == FlipMode.NONE
        assert request.rotate == 0

    def test_full_query(self) -> None:
        """Test every parameter is read."""
        request = parse_transform_query(
            {
                "w": "100",
                "h": "50",
                "fit": "attention",
                "f": "webp",
                "q": "70",
                "crop": "1,2,30,40",
                "blur": "3",
                "sharpen": "1.5",
                "brightness": "-20",
                "contrast": "1.2",
                "saturation": "0.5",
                "auto": "true",
                "grayscale": "1",
                "flip": "both",
                "rotate": "270",
                "bg": "#FF00AA",
                "strip": "false",
            },
            url=URL,
        )

        assert request.width == 100
        assert request.height == 50
        assert request.fit == FitMode.ATTENTION
        assert request.format == OutputFormat.WEBP
        assert request.quality == 70
        assert request.crop == CropRect(x=1, y=2, width=30, height=40)
        assert request.blur == 3
        assert request.sharpen == 1.5
        assert request.brightness == -20.0
        assert request.contrast == 1.2
        assert request.saturation == 0.5
        assert request.auto_optimize is True
        assert request.grayscale is True
        assert request.flip == FlipMode.BOTH
        assert request.rotate == 270
        assert request.background == "ff00aa"
        assert request.strip is False

    @pytest.mark.parametrize("quality", ["0", "101", "abc", "-5"])
    def test_invalid_quality_defaults(self, quality: str) -> None:
        """Test out-of-range quality falls back to 80."""
        assert parse_transform_query({"q": quality}, url=URL).quality == 80

    def test_malformed_numbers_ignored(self) -> None:
        """Test malformed numbers fall back to defaults."""
        request = parse_transform_query(
            {"w": "wide", "h": "-10", "blur": "x", "sharpen": "-2", "brightness": "nan"},
            url=URL,
        )

        assert request.width == 0
        assert request.height == 0
        assert request.blur == 0
        assert request.sharpen == 0.0
        assert request.brightness == 0.0

    def test_zero_contrast_and_saturation_mean_unchanged(self) -> None:
        """Test zero contrast and saturation are treated as unset."""
        request = parse_transform_query({"contrast": "0", "saturation": "0"}, url=URL)
        assert request.contrast == 1.0
        assert request.saturation == 1.0

    def test_adjustments_rounded_to_key_precision(self) -> None:
        """Test float adjustments carry only the precision the cache key keeps."""
        request = parse_transform_query(
            {"sharpen": "1.007", "brightness": "-0.001", "contrast": "1.004", "saturation": "0.996"},
            url=URL,
        )

        assert request.sharpen == 1.01
        assert request.brightness == 0.0
        assert str(request.brightness) == "0.0"
        assert request.contrast == 1.0
        assert request.saturation == 1.0

    def test_near_zero_contrast_means_unchanged(self) -> None:
        """Test contrast that rounds to zero is treated as unset, not as flat gray."""
        request = parse_transform_query({"contrast": "0.004", "saturation": "-0.001"}, url=URL)
        assert request.contrast == 1.0
        assert request.saturation == 1.0

    def test_constructed_request_rounded(self) -> None:
        """Test direct construction applies the same rounding."""
        request = TransformRequest(url=URL, contrast=1.234, brightness=-0.004)
        assert request.contrast == 1.23
        assert str(request.brightness) == "0.0"

    @pytest.mark.parametrize(
        "value,expected",
        [("jpg", OutputFormat.JPEG), ("PNG", OutputFormat.PNG), ("avif", OutputFormat.AVIF),
         ("svg", OutputFormat.JPEG), ("gif", OutputFormat.JPEG)],
    )
    def test_format_parsing(self, value: str, expected: OutputFormat) -> None:
        """Test output format normalization."""
        assert parse_transform_query({"f": value}, url=URL).format == expected

    def test_unknown_fit_is_none(self) -> None:
        """Test unknown fit mode disables cropping."""
        assert parse_transform_query({"fit": "contain"}, url=URL).fit == FitMode.NONE

    @pytest.mark.parametrize("crop", ["1,2,3", "a,b,c,d", "0,0,0,10", "-1,0,10,10"])
    def test_invalid_crop_ignored(self, crop: str) -> None:
        """Test malformed crop rectangles are ignored."""
        assert parse_transform_query({"crop": crop}, url=URL).crop is None

    def test_unsupported_rotation_ignored(self) -> None:
        """Test rotation other than 90/180/270 is dropped."""
        assert parse_transform_query({"rotate": "45"}, url=URL).rotate == 0

    def test_bw_alias(self) -> None:
        """Test bw is accepted as grayscale alias."""
        assert parse_transform_query({"bw": "true"}, url=URL).grayscale is True

    def test_invalid_background_dropped(self) -> None:
        """Test non-hex background colors are dropped."""
        assert parse_transform_query({"bg": "red"}, url=URL).background == ""
        assert parse_transform_query({"bg": "fff"}, url=URL).background == "fff"

    def test_strip_default_true(self) -> None:
        """Test metadata is stripped unless explicitly disabled."""
        assert parse_transform_query({"strip": "yes"}, url=URL).strip is True
        assert parse_transform_query({"strip": "0"}, url=URL).strip is False
