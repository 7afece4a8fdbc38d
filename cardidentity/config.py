from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "Card Identity Engine"
    debug: bool = False

    database_url: str = "sqlite+aiosqlite:///./data/cards.db"

    scryfall_api_url: str = "https://api.scryfall.com"
    user_agent: str = "CardIdentity/1.0"

    # Remote accelerator (Scryfall cache microservice). Unset disables the tier.
    scryfall_cache_url: str | None = None

    # Per-call timeouts in seconds
    request_timeout: float = 10.0
    probe_timeout: float = 2.0
    bulk_download_timeout: float = 300.0

    # Minimum spacing between outbound upstream calls (seconds)
    rate_limit_delay: float = 0.1

    bulk_batch_size: int = 10_000
    bulk_freshness_days: int = 7
    bulk_import_enabled: bool = False
    # Seconds between scheduler freshness checks
    bulk_check_interval: float = 3600.0


settings = Settings()


# =============================================================================
# DEGRADATION THRESHOLDS
# =============================================================================

# Average accelerator latency above this marks the tier degraded
DEGRADED_LATENCY_MS = 2000.0

# Error rate (percent) above this marks the tier degraded
DEGRADED_ERROR_RATE = 5.0


# =============================================================================
# HOT CACHE LIMITS
# =============================================================================

HOT_CACHE_CAPACITY = 500

# Cards serializing larger than this skip the RAM cache (e.g. thousands of tokens)
HOT_CACHE_MAX_ITEM_BYTES = 50 * 1024


# =============================================================================
# UPSTREAM RESPONSE CACHE TTLS (seconds)
# =============================================================================

RESPONSE_CACHE_TTL: dict[str, int] = {
    "autocomplete": 7 * 24 * 60 * 60,
    "named": 24 * 60 * 60,
    "search": 24 * 60 * 60,
    "card": 7 * 24 * 60 * 60,
}

# /cards/collection accepts at most 75 identifiers per call
COLLECTION_BATCH_SIZE = 75

# Concurrent accelerator lookups during batch resolution
ACCELERATOR_CONCURRENCY = 8
