"""Source URL validation and domain allow-listing."""

import logging
from typing import Iterable, Optional
from urllib.parse import unquote, urlsplit

logger = logging.getLogger(__name__)

WILDCARD = "*"


class InvalidInputError(Exception):
    """Raised when the source URL is missing or cannot be parsed."""

    pass


class AuthorizationDeniedError(Exception):
    """Raised when the source host is not on the allow-list."""

    pass


def is_domain_allowed(host: str, allowed_domains: Iterable[str]) -> bool:
    """
    Check a host against the allow-list.

    Entries are evaluated in order. A "*" entry admits every host; otherwise a
    host matches an entry exactly or as a subdomain of it.

    Args:
        host: Lower-cased host name without port
        allowed_domains: Configured allow-list entries

    Returns:
        True if the host is allowed
    """
    host = host.lower()
    for entry in allowed_domains:
        domain = entry.strip().lower()
        if domain == WILDCARD:
            return True
        domain = domain.lstrip(".")
        if not domain:
            continue
        if host == domain or host.endswith("." + domain):
            return True
    return False


def _parse_host(candidate: str) -> Optional[tuple[str, str]]:
    """Return (scheme, host) for a URL, or None if it cannot be parsed."""
    try:
        parsed = urlsplit(candidate)
        host = parsed.hostname
        # Accessing the port validates it.
        parsed.port
    except ValueError:
        return None
    if not host:
        return None
    return parsed.scheme.lower(), host


class RequestAuthorizer:
    """Resolve the source URL of a request and enforce the domain allow-list."""

    def __init__(self, allowed_domains: list[str]):
        """Initialize authorizer with the configured allow-list."""
        self.allowed_domains = allowed_domains

    def authorize(self, raw_url: Optional[str]) -> str:
        """
        Validate a source URL and check its host against the allow-list.

        The URL is parsed as given first. If that fails, it is URL-decoded
        and parsed again.

        Args:
            raw_url: Source URL from the query string

        Returns:
            The URL that was successfully parsed

        Raises:
            InvalidInputError: If the URL is missing or unparsable
            AuthorizationDeniedError: If the host is not allowed
        """
        if not raw_url:
            raise InvalidInputError("Missing URL parameter")

        resolved_url = raw_url
        parsed = _parse_host(raw_url)
        if parsed is None:
            try:
                resolved_url = unquote(raw_url, errors="strict")
            except UnicodeDecodeError:
                resolved_url = raw_url
            parsed = _parse_host(resolved_url)

        if parsed is None:
            raise InvalidInputError("Invalid URL")

        scheme, host = parsed
        if scheme not in ("http", "https"):
            raise InvalidInputError(f"Invalid URL scheme: {scheme or 'none'}")

        if not is_domain_allowed(host, self.allowed_domains):
            logger.warning(f"Rejected source host: {host}")
            raise AuthorizationDeniedError("Domain not allowed")

        return resolved_url
