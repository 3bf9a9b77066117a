"""
Configuration management for LeadScan.
Loads from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List

# Base paths
PROJECT_ROOT = Path(__file__).parent.parent.resolve()
DATA_DIR = PROJECT_ROOT / "data"
LOG_DIR = PROJECT_ROOT / "logs"
OUTPUT_DIR = PROJECT_ROOT / "output"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def _browser_headers() -> Dict[str, str]:
    return {
        "User-Agent": USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "DNT": "1",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
    }


@dataclass
class RetryConfig:
    """Retry and backoff configuration.

    The defaults give the fetcher's policy: 3 attempts with a fixed
    1 second pause. Set exponential_base > 1 for real backoff.
    """
    max_retries: int = 2
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    exponential_base: float = 1.0
    jitter: bool = False


@dataclass
class FetchConfig:
    """HTTP fetch settings."""
    request_timeout_seconds: float = field(
        default_factory=lambda: float(os.environ.get("LEADSCAN_REQUEST_TIMEOUT", "10"))
    )
    headers: Dict[str, str] = field(default_factory=_browser_headers)
    verify_ssl: bool = True
    max_redirects: int = 30
    chunk_size: int = 16384
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass
class SignatureConfig:
    """Thresholds for hosting-failure and bot-block heuristics."""
    # Visible text above this length counts as a real, working page
    substantial_content_chars: int = 2000
    substantial_required_matches: int = 2
    short_required_matches: int = 1
    # 403 responses with bodies shorter than this are treated as bot blocks
    bot_block_max_body_chars: int = 1000
    bot_block_markers: List[str] = field(default_factory=lambda: [
        "access denied",
        "cloudflare",
        "security check",
        "bot",
    ])
    error_detail_max_chars: int = 100


@dataclass
class SchedulerConfig:
    """Rescan cadence in days."""
    up_interval_days: int = 7
    inactive_interval_days: int = 30  # no_website / redirect_social
    fresh_down_interval_days: int = 7
    recent_down_interval_days: int = 14
    stale_down_interval_days: int = 30
    fresh_down_max_days: int = 7  # down for fewer days than this = fresh
    recent_down_max_days: int = 30
    default_interval_days: int = 7


@dataclass
class ScanConfig:
    """Orchestration settings for scan runs."""
    delay_between_checks_seconds: float = field(
        default_factory=lambda: float(os.environ.get("LEADSCAN_SCAN_DELAY_SECONDS", "1.0"))
    )
    max_businesses: int = field(
        default_factory=lambda: int(os.environ.get("LEADSCAN_MAX_BUSINESSES", "1000"))
    )


@dataclass
class DatabaseConfig:
    """SQLite database configuration."""
    db_path: Path = field(
        default_factory=lambda: Path(os.environ.get("LEADSCAN_DB_PATH", str(DATA_DIR / "leadscan.db")))
    )
    fresh_lead_days: int = 7  # leads down for less than this sort first


@dataclass
class Config:
    """Main configuration container."""
    fetch: FetchConfig = field(default_factory=FetchConfig)
    signatures: SignatureConfig = field(default_factory=SignatureConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    log_level: str = field(default_factory=lambda: os.environ.get("LEADSCAN_LOG_LEVEL", "INFO"))


def load_config() -> Config:
    """Load configuration from environment variables."""
    # Ensure directories exist
    for directory in [DATA_DIR, LOG_DIR, OUTPUT_DIR]:
        directory.mkdir(parents=True, exist_ok=True)

    return Config()


def validate_config(config: Config) -> List[str]:
    """Validate configuration and return list of errors."""
    errors = []

    if config.fetch.request_timeout_seconds <= 0:
        errors.append("LEADSCAN_REQUEST_TIMEOUT must be positive")
    if config.fetch.retry.max_retries < 0:
        errors.append("Retry count cannot be negative")
    if config.scan.delay_between_checks_seconds < 0:
        errors.append("LEADSCAN_SCAN_DELAY_SECONDS cannot be negative")
    if config.scan.max_businesses <= 0:
        errors.append("LEADSCAN_MAX_BUSINESSES must be positive")

    return errors
