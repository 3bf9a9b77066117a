"""
Rescan scheduling for LeadScan.

Cadence:
- Working sites are rechecked weekly
- No website / social-only businesses are rechecked monthly
- Broken sites back off as they stay down: weekly, then bi-weekly, then monthly
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from .config import SchedulerConfig
from .website_checker import WebsiteStatus, is_down

SECONDS_PER_DAY = 24 * 60 * 60


def _as_utc(value: Union[datetime, str]) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_down(first_detected_down: Union[datetime, str], now: datetime) -> int:
    """Whole days elapsed since the site was first seen down."""
    elapsed = (_as_utc(now) - _as_utc(first_detected_down)).total_seconds()
    return int(elapsed // SECONDS_PER_DAY)


def scan_interval_days(
    status,
    first_detected_down: Optional[Union[datetime, str]],
    config: SchedulerConfig = None,
    now: datetime = None,
) -> int:
    """Number of days until the next check."""
    config = config or SchedulerConfig()
    status = WebsiteStatus(status)

    if status == WebsiteStatus.UP:
        return config.up_interval_days
    if status in (WebsiteStatus.NO_WEBSITE, WebsiteStatus.REDIRECT_SOCIAL):
        return config.inactive_interval_days
    if is_down(status) and first_detected_down:
        elapsed_days = days_down(first_detected_down, now or datetime.now(timezone.utc))
        if elapsed_days < config.fresh_down_max_days:
            return config.fresh_down_interval_days
        if elapsed_days < config.recent_down_max_days:
            return config.recent_down_interval_days
        return config.stale_down_interval_days
    return config.default_interval_days


def get_next_scan_date(
    status,
    first_detected_down: Optional[Union[datetime, str]],
    config: SchedulerConfig = None,
    now: datetime = None,
) -> datetime:
    """
    Absolute UTC timestamp of the next check for a business.

    now defaults to the current time; pass it to get reproducible dates.
    """
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    interval = scan_interval_days(status, first_detected_down, config=config, now=now)
    return now + timedelta(days=interval)
