"""
Configuration management for the dealer inventory crawler.
Handles environment variables and crawl/quality thresholds.
"""
import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")  # json or console

    # Storage (target registry + crawl run audit)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///dealer_crawl.db")

    # Fetch collaborator
    # "firecrawl" uses the managed scrape service, "direct" issues a plain GET
    FETCH_MODE: str = os.getenv("FETCH_MODE", "firecrawl")
    FIRECRAWL_API_KEY: Optional[str] = os.getenv("FIRECRAWL_API_KEY")
    FIRECRAWL_API_URL: str = os.getenv("FIRECRAWL_API_URL", "https://api.firecrawl.dev/v1/scrape")
    FIRECRAWL_WAIT_MS: int = int(os.getenv("FIRECRAWL_WAIT_MS", "3000"))
    REQUEST_TIMEOUT: int = int(os.getenv("REQUEST_TIMEOUT", "30"))

    # Ingest collaborator (record warehouse)
    INGEST_URL: Optional[str] = os.getenv("INGEST_URL")
    INGEST_API_KEY: Optional[str] = os.getenv("INGEST_API_KEY")

    # Orchestrator
    INTER_TARGET_DELAY_SECONDS: float = float(os.getenv("INTER_TARGET_DELAY_SECONDS", "2.0"))
    CRON_BATCH_SIZE: int = int(os.getenv("CRON_BATCH_SIZE", "20"))
    VALIDATION_BATCH_SIZE: int = int(os.getenv("VALIDATION_BATCH_SIZE", "10"))
    VALIDATION_MAX_RUNS: int = int(os.getenv("VALIDATION_MAX_RUNS", "10"))

    # Quality gate
    MIN_PRICE: int = int(os.getenv("MIN_PRICE", "3000"))
    MAX_PRICE: int = int(os.getenv("MAX_PRICE", "150000"))
    MIN_YEAR: int = int(os.getenv("MIN_YEAR", "2010"))  # dealer-grade cutoff

    # Extraction sanity checks
    MIN_PLAUSIBLE_YEAR: int = int(os.getenv("MIN_PLAUSIBLE_YEAR", "1980"))

    # Health monitor
    HEALTH_LOOKBACK_DAYS: int = int(os.getenv("HEALTH_LOOKBACK_DAYS", "7"))

    @classmethod
    def is_firecrawl_configured(cls) -> bool:
        """Check if the managed scrape service has an API key."""
        return bool(cls.FIRECRAWL_API_KEY)

    @classmethod
    def is_ingest_configured(cls) -> bool:
        """
        Check if the ingest collaborator is fully configured.

        Requires ALL of:
        - INGEST_URL
        - INGEST_API_KEY
        """
        return all([cls.INGEST_URL, cls.INGEST_API_KEY])

    @classmethod
    def get_missing_ingest_vars(cls) -> list:
        """Return list of missing ingest environment variables."""
        missing = []
        if not cls.INGEST_URL:
            missing.append("INGEST_URL")
        if not cls.INGEST_API_KEY:
            missing.append("INGEST_API_KEY")
        return missing


config = Config()
