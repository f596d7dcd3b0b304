from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Durations are expressed in milliseconds for the resilience components
    and in seconds for the httpx connection pool, matching the units each
    consumer works in.
    """

    # Remote API settings
    api_base_url: str = "https://graph.threads.net/v1.0"
    api_access_token: str = ""
    api_timeout: float = 30.0

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 30.0  # Time to read response data
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Rate limiting settings (token bucket)
    rate_limit_enabled: bool = True
    rate_limit_max_tokens: int = 100
    rate_limit_refill_rate: float = 10.0  # Tokens added per interval
    rate_limit_refill_interval_ms: int = 1000

    # Cache settings
    cache_enabled: bool = True
    cache_ttl_ms: int = 60_000  # 1 minute
    cache_max_size: int = 100
    cache_cleanup_interval_ms: int = 30_000  # Sweep every 30 seconds

    # Webhook settings
    webhooks_enabled: bool = False
    webhook_max_retries: int = 3  # Total delivery attempts per subscription
    webhook_retry_delay_ms: int = 1000
    webhook_timeout_ms: int = 5000
    webhook_user_agent: str = "relaykit-webhook/1.0"

    # Token refresh settings
    token_refresh_margin_seconds: int = 7 * 24 * 60 * 60  # 7 days

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator(
        "rate_limit_max_tokens",
        "rate_limit_refill_interval_ms",
        "cache_ttl_ms",
        "cache_max_size",
        "cache_cleanup_interval_ms",
        "webhook_max_retries",
        "webhook_timeout_ms",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate limits and intervals are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("rate_limit_refill_rate")
    @classmethod
    def validate_refill_rate(cls, v: float) -> float:
        """Validate the refill rate is positive."""
        if v <= 0:
            raise ValueError("rate_limit_refill_rate must be positive")
        return v

    @field_validator("webhook_retry_delay_ms")
    @classmethod
    def validate_retry_delay(cls, v: int) -> int:
        """Validate the retry delay is not negative."""
        if v < 0:
            raise ValueError("webhook_retry_delay_ms must not be negative")
        return v

    @field_validator("api_timeout", "httpx_connect_timeout", "httpx_read_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return value

    model_config = SettingsConfigDict(
        env_prefix="RELAY_", env_file=".env", extra="ignore"
    )


# Global settings instance
settings = Settings()
