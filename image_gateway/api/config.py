"""Application configuration and constants."""

from pydantic_settings import BaseSettings, SettingsConfigDict

CACHE_CONTROL = "public, max-age=31536000"
DEFAULT_QUALITY = 80
SNIFF_BYTES = 500
FLOAT_PRECISION = 2
MAX_IMAGE_PIXELS = 100_000_000

CACHE_MAX_SIZE_MB = 500
MAX_IMAGE_SIZE_BYTES = 10 * 1024 * 1024
DOWNLOAD_TIMEOUT_SECONDS = 15


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    api_host: str = "0.0.0.0"
    api_port: int = 3000
    api_cors_origins: str = "*"

    allowed_domains: str = ""

    cache_ttl: int = 86400
    cache_max_size_mb: int = CACHE_MAX_SIZE_MB

    max_image_size: int = MAX_IMAGE_SIZE_BYTES

    rate_limit_enabled: bool = True
    rate_limit: int = 100
    rate_limit_idle_sweep_seconds: float = 60.0

    download_timeout_seconds: float = DOWNLOAD_TIMEOUT_SECONDS
    download_connect_timeout_seconds: float = 10.0
    download_max_connections: int = 100
    download_max_keepalive_connections: int = 10
    download_keepalive_expiry_seconds: float = 90.0

    engine_concurrency: int = 8
    engine_max_image_pixels: int = MAX_IMAGE_PIXELS
    engine_blocks_max: int = 200

    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        if self.api_cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.api_cors_origins.split(",")]

    @property
    def allowed_domains_list(self) -> list[str]:
        """Parse allowed source domains from comma-separated string."""
        if not self.allowed_domains:
            return []
        return [
            domain.strip() for domain in self.allowed_domains.split(",") if domain.strip()
        ]


settings = Settings()
