"""Pipeline configuration.

Settings come from environment variables (optionally loaded from a .env file)
and are handed to components through their constructors.

Usage:
    from core.config import load_config

    config = load_config()
    resolver = ReferenceResolver(client, batch_size=config.lookup_batch_size)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv


REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DB_PATH = REPO_ROOT / "pos_pipeline.db"


@dataclass
class RetryConfig:
    """Configuration for HTTP retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retry_on_status: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class PipelineConfig:
    """Runtime settings for the sync/derivation/dispatch pipeline."""
    db_path: Path = DEFAULT_DB_PATH

    # Reference (product/department classification) service
    reference_base_url: str = "https://loyaltyapi.vmt.vn"
    reference_timeout_seconds: float = 5.0
    lookup_batch_size: int = 10

    # ERP submission endpoint
    erp_base_url: str = "http://localhost:8080/api"
    erp_timeout_seconds: float = 30.0
    erp_retry: RetryConfig = field(default_factory=RetryConfig)
    erp_token: Optional[str] = None

    # Retail feed
    feed_base_url: str = "http://localhost:8081/api"
    feed_timeout_seconds: float = 30.0
    feed_parts: int = 10

    # Stock-transfer persistence
    stock_chunk_size: int = 500

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def load_config(env_file: Optional[Path] = None) -> PipelineConfig:
    """Build a PipelineConfig from the environment.

    Reads PIPELINE_* variables; anything unset keeps its default.

    Args:
        env_file: Optional .env path (defaults to <repo>/.env if present)

    Returns:
        PipelineConfig
    """
    env_path = env_file or REPO_ROOT / ".env"
    if Path(env_path).exists():
        load_dotenv(env_path)

    defaults = PipelineConfig()
    retry = RetryConfig(
        max_retries=_env_int("PIPELINE_ERP_MAX_RETRIES", defaults.erp_retry.max_retries),
        base_delay=_env_float("PIPELINE_ERP_RETRY_BASE_DELAY", defaults.erp_retry.base_delay),
        max_delay=_env_float("PIPELINE_ERP_RETRY_MAX_DELAY", defaults.erp_retry.max_delay),
    )

    return PipelineConfig(
        db_path=Path(os.getenv("PIPELINE_DB_PATH", str(defaults.db_path))),
        reference_base_url=os.getenv("PIPELINE_REFERENCE_BASE_URL", defaults.reference_base_url),
        reference_timeout_seconds=_env_float(
            "PIPELINE_REFERENCE_TIMEOUT_SECONDS", defaults.reference_timeout_seconds
        ),
        lookup_batch_size=_env_int("PIPELINE_LOOKUP_BATCH_SIZE", defaults.lookup_batch_size),
        erp_base_url=os.getenv("PIPELINE_ERP_BASE_URL", defaults.erp_base_url),
        erp_timeout_seconds=_env_float("PIPELINE_ERP_TIMEOUT_SECONDS", defaults.erp_timeout_seconds),
        erp_retry=retry,
        erp_token=os.getenv("PIPELINE_ERP_TOKEN") or None,
        feed_base_url=os.getenv("PIPELINE_FEED_BASE_URL", defaults.feed_base_url),
        feed_timeout_seconds=_env_float("PIPELINE_FEED_TIMEOUT_SECONDS", defaults.feed_timeout_seconds),
        feed_parts=_env_int("PIPELINE_FEED_PARTS", defaults.feed_parts),
        stock_chunk_size=_env_int("PIPELINE_STOCK_CHUNK_SIZE", defaults.stock_chunk_size),
        log_level=os.getenv("PIPELINE_LOG_LEVEL", defaults.log_level),
        json_logs=_env_bool("PIPELINE_JSON_LOGS", defaults.json_logs),
    )
