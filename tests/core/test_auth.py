"""Tests for source URL authorization."""

import pytest

from image_gateway.core.auth import (
    AuthorizationDeniedError,
    InvalidInputError,
    RequestAuthorizer,
    is_domain_allowed,
)


class TestIsDomainAllowed:
    """Test the allow-list predicate."""

    def test_wildcard_allows_any_host(self) -> None:
        """Test '*' admits every host."""
        assert is_domain_allowed("anything.test", ["*"])

    def test_wildcard_anywhere_in_list(self) -> None:
        """Test '*' admits every host even after other entries."""
        assert is_domain_allowed("anything.test", ["example.com", "*"])

    def test_exact_and_subdomain(self) -> None:
        """Test exact host and subdomains are allowed."""
        assert is_domain_allowed("example.com", ["example.com"])
        assert is_domain_allowed("img.example.com", ["example.com"])
        assert is_domain_allowed("a.b.example.com", ["example.com"])

    def test_suffix_without_dot_denied(self) -> None:
        """Test a host merely ending with the domain text is denied."""
        assert not is_domain_allowed("evilexample.com", ["example.com"])

    def test_empty_list_denies(self) -> None:
        """Test an empty allow-list denies everything."""
        assert not is_domain_allowed("example.com", [])
        assert not is_domain_allowed("example.com", [""])

    def test_case_insensitive(self) -> None:
        """Test matching ignores case."""
        assert is_domain_allowed("IMG.Example.COM", ["example.com"])


class TestRequestAuthorizer:
    """Test URL resolution and authorization."""

    @pytest.fixture
    def authorizer(self) -> RequestAuthorizer:
        return RequestAuthorizer(["example.com"])

    def test_allowed_url_returned(self, authorizer: RequestAuthorizer) -> None:
        """Test an allowed URL is returned unchanged."""
        url = "https://img.example.com/a.jpg?v=1"
        assert authorizer.authorize(url) == url

    def test_port_ignored_for_matching(self, authorizer: RequestAuthorizer) -> None:
        """Test the port does not affect host matching."""
        assert authorizer.authorize("http://example.com:8080/a.png")

    @pytest.mark.parametrize("url", [None, ""])
    def test_missing_url(self, authorizer: RequestAuthorizer, url: str) -> None:
        """Test missing URL is invalid input."""
        with pytest.raises(InvalidInputError, match="Missing"):
            authorizer.authorize(url)

    def test_encoded_url_decoded(self, authorizer: RequestAuthorizer) -> None:
        """Test a percent-encoded URL is decoded before matching."""
        resolved = authorizer.authorize("https%3A%2F%2Fimg.example.com%2Fa.jpg")
        assert resolved == "https://img.example.com/a.jpg"

    @pytest.mark.parametrize("url", ["not a url", "http://[::1/a.png", "https://"])
    def test_unparsable_url(self, authorizer: RequestAuthorizer, url: str) -> None:
        """Test unparsable URLs are invalid input."""
        with pytest.raises(InvalidInputError):
            authorizer.authorize(url)

    def test_non_http_scheme(self, authorizer: RequestAuthorizer) -> None:
        """Test non-HTTP schemes are invalid input."""
        with pytest.raises(InvalidInputError, match="scheme"):
            authorizer.authorize("ftp://example.com/a.jpg")

    def test_denied_host(self, authorizer: RequestAuthorizer) -> None:
        """Test hosts outside the allow-list are denied."""
        with pytest.raises(AuthorizationDeniedError):
            authorizer.authorize("https://evilexample.com/a.jpg")

    def test_wildcard_authorizer(self) -> None:
        """Test wildcard allow-list admits any host."""
        assert RequestAuthorizer(["*"]).authorize("https://anywhere.test/x.png")
