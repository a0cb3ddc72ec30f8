"""Application configuration using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # App Settings
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = ""  # JSON file logging is enabled only when set

    # ==========================================================================
    # Price Truth Cache
    # ==========================================================================
    price_cache_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    stale_on_error: bool = True  # Serve an expired snapshot when the comp search fails

    # TTL per category (hours)
    cache_ttl_hours: dict[str, int] = {
        "Trading Cards": 24,
        "Collectibles": 168,  # 7 days
        "Watches": 504,  # 21 days
        "Toys": 504,  # 21 days
    }
    default_cache_ttl_hours: int = 168

    # ==========================================================================
    # Retry / Backoff
    # ==========================================================================
    retry_max_retries: int = 3
    retry_initial_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000
    retry_multiplier: float = 2.0
    retry_jitter_fraction: float = 0.1  # +/- 10%

    # Service-specific overrides
    service_retry_policies: dict[str, dict] = {
        "ebay": {"max_retries": 5, "initial_delay_ms": 2000, "max_delay_ms": 60000},
        "openai": {"max_retries": 3, "initial_delay_ms": 1000, "max_delay_ms": 30000},
        "serpapi": {"max_retries": 4, "initial_delay_ms": 3000, "max_delay_ms": 60000},
        "psa": {"max_retries": 3, "initial_delay_ms": 1000, "max_delay_ms": 30000},
    }

    # ==========================================================================
    # Certification Registry (PSA)
    # ==========================================================================
    psa_api_base_url: str = "https://api.psacard.com/publicapi"
    psa_api_token: str = ""
    psa_daily_quota: int = 100
    psa_timeout_seconds: float = 15.0

    # ==========================================================================
    # Decision Defaults
    # ==========================================================================
    margin_threshold: float = 0.25  # 25% minimum margin for FLIP
    min_profit_floor: float = 15.0  # Dollar floor for target profit
    max_buy_safety_factor: float = 0.8
    conservative_multiplier: float = 0.85  # Applied to anchor when variant unconfirmed
    fixed_overhead: float = 5.0  # Packaging, labels, etc.
    default_fee_rate: float = 0.13

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FLIPCORE_",
        extra="ignore",
    )


settings = Settings()
