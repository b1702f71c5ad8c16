"""Application Configuration"""
import os
from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Idea Scanner"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./ideascan.db")

    # Queue (Celery broker + result backend)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # LLM providers
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    ANTHROPIC_CLASSIFY_MODEL: str = "claude-haiku-4-5"
    ANTHROPIC_EXTRACT_MODEL: str = "claude-sonnet-4-5"
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_CLASSIFY_MODEL: str = "gpt-5-mini-2025-08-07"
    CLASSIFY_MAX_TOKENS: int = 1024
    EXTRACT_MAX_TOKENS: int = 4096
    CLASSIFY_TEMPERATURE: float = 0.3
    EXTRACT_TEMPERATURE: float = 0.5

    # Which providers take part in classification consensus / extraction
    CLASSIFICATION_PROVIDERS: List[str] = ["anthropic", "openai"]
    EXTRACTION_PROVIDER: str = "anthropic"

    # HTTP behaviour of provider clients
    LLM_CONNECT_TIMEOUT: float = 30.0
    LLM_REQUEST_TIMEOUT: float = 120.0
    LLM_HTTP_MAX_ATTEMPTS: int = 3
    LLM_HTTP_BASE_DELAY_MS: int = 250
    LLM_HTTP_MAX_DELAY_MS: int = 15000
    LLM_HTTP_JITTER_MS: int = 100
    LLM_HONOR_RETRY_AFTER: bool = True
    PROVIDER_JOIN_TIMEOUT_SECONDS: float = 300.0

    # Per-post retry loop
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_MAX_BACKOFF_SECONDS: int = 30

    # Consensus
    CONSENSUS_KEEP_THRESHOLD: float = 0.6
    CONSENSUS_DISCARD_THRESHOLD: float = 0.4
    CONSENSUS_SHORTCUT_CONFIDENCE: float = 0.8
    FALLBACK_CONFIDENCE_THRESHOLD: float = 0.7
    FALLBACK_PENALTY_FACTOR: float = 1.0

    # Batching
    CLASSIFY_CHUNK_SIZE: int = 10
    EXTRACT_CHUNK_SIZE: int = 5
    STALE_BATCH_THRESHOLD_SECONDS: int = 7200
    CLASSIFY_CHUNK_TIME_LIMIT: int = 2400
    EXTRACT_CHUNK_TIME_LIMIT: int = 1500

    # Celery task name of the external Reddit fetcher; unset means the fetcher
    # is started by whatever watches for scans entering ``fetching``.
    FETCH_TASK_NAME: Optional[str] = None

    # Completion pollers (seconds between checks)
    FETCH_POLL_SECONDS: int = 10
    CLASSIFY_POLL_SECONDS: int = 10
    EXTRACT_POLL_SECONDS: int = 15

    # Request building
    CLASSIFY_COMMENT_LIMIT: int = 50
    EXTRACT_COMMENT_LIMIT: int = 100
    MAX_IDEAS_PER_POST: int = 5

    # Scan windows
    DEFAULT_TIMEFRAME_WEEKS: int = 1
    RESCAN_TIMEFRAME_WEEKS: int = 2

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

settings = Settings()
