from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ALGORITHM_NAMES = ("leaky_bucket", "token_bucket")
KEY_STRATEGIES = ("ip", "api_key", "user_id")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Redis settings (shared bucket state)
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 5.0

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_algorithm: str = "leaky_bucket"  # leaky_bucket | token_bucket
    rate_limit_state_ttl_seconds: int = 3600  # 0 = keys never expire
    rate_limit_atomic: bool = False  # Run allow() as a Lua script
    rate_limit_strict_state: bool = False  # Raise on malformed stored numbers

    # Leaky bucket: requests add water, water drains at leak_rate per second
    leaky_bucket_capacity: float = 10.0
    leaky_bucket_leak_rate: float = 1.0

    # Token bucket: tokens refill at refill_rate per second
    token_bucket_capacity: float = 10.0
    token_bucket_refill_rate: float = 1.0
    token_bucket_status_refresh: bool = True  # Status reads write back refill

    # Request identity
    rate_limit_key_strategy: str = "ip"  # ip | api_key | user_id
    rate_limit_api_key_header: str = "X-API-Key"
    rate_limit_user_id_attr: str = "user_id"
    rate_limit_exempt_prefixes: list[str] = ["/health", "/dashboard"]

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        """Validate the initial algorithm is a recognized name."""
        v = v.strip().lower()
        if v not in ALGORITHM_NAMES:
            raise ValueError(
                f"rate_limit_algorithm must be one of {', '.join(ALGORITHM_NAMES)}"
            )
        return v

    @field_validator("rate_limit_key_strategy")
    @classmethod
    def validate_key_strategy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in KEY_STRATEGIES:
            raise ValueError(
                f"rate_limit_key_strategy must be one of {', '.join(KEY_STRATEGIES)}"
            )
        return v

    @field_validator(
        "leaky_bucket_capacity",
        "leaky_bucket_leak_rate",
        "token_bucket_capacity",
        "token_bucket_refill_rate",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Validate capacities and rates are not negative."""
        if v < 0:
            raise ValueError("Bucket capacity and rate values must be >= 0")
        return v

    @field_validator("rate_limit_state_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v < 0:
            raise ValueError("rate_limit_state_ttl_seconds must be >= 0 (0 disables expiry)")
        return v

    @field_validator("redis_socket_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
