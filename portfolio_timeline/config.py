"""Application settings loaded from the environment."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration.

    Every field can be overridden with a ``PORTFOLIO_TIMELINE_`` prefixed
    environment variable, e.g. ``PORTFOLIO_TIMELINE_BENCHMARK_TICKER=SPY``.
    """

    model_config = SettingsConfigDict(
        env_prefix="PORTFOLIO_TIMELINE_",
        env_file=".env",
        extra="ignore",
    )

    db_path: Path = Path(__file__).resolve().parent.parent / "data" / "portfolios.db"
    log_level: str = "INFO"

    # Live quotes are refreshed at most this often per portfolio
    quote_cache_ttl_seconds: int = 300
    history_cache_ttl_seconds: int = 300

    benchmark_ticker: str = "QQQ"
    linked_benchmark_ticker: str = "SPY"
    crypto_quote_currency: str = "USD"

    short_range_max_points: int = 40
    long_range_max_points: int = 60


settings = Settings()
