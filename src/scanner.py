"""
Scan orchestration for LeadScan.
Checks businesses one at a time, tracks down-time history, and schedules rescans.

Progress lives in an explicit ScanProgress object handed to every step.
Cancellation is a flag on that object, read once per business.
"""

import signal
import time
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from typing import Callable, Iterable, List, Optional

from .config import Config
from .db import Database, Business, ScanRecord
from .logging_setup import RunContext, get_logger
from .scheduler import get_next_scan_date
from .website_checker import WebsiteCheckResult, WebsiteStatus, check_with_isolation, is_down

logger = get_logger("scanner")

IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"
CANCELLED = "cancelled"
ERROR = "error"


class ScanInProgressError(RuntimeError):
    """A scan was started with a progress object that is already running."""


@dataclass
class ScanProgress:
    """Counters and state for one scan run."""
    status: str = IDLE
    businesses_scanned: int = 0
    new_leads_found: int = 0
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancel_requested: bool = False

    def start(self):
        if self.status == RUNNING:
            raise ScanInProgressError("Scan already in progress")
        self.status = RUNNING
        self.businesses_scanned = 0
        self.new_leads_found = 0
        self.error = None
        self.cancel_requested = False
        self.started_at = datetime.now(timezone.utc)
        self.completed_at = None

    def request_cancel(self):
        """Ask a running scan to stop after the current business."""
        if self.status == RUNNING:
            self.cancel_requested = True

    def finish(self, error: str = None):
        if error:
            self.status = ERROR
            self.error = error
        elif self.cancel_requested:
            self.status = CANCELLED
        else:
            self.status = COMPLETED
        self.completed_at = datetime.now(timezone.utc)

    def snapshot(self) -> dict:
        """Copy of the current state, safe to hand to other threads."""
        return asdict(self)


class GracefulShutdown:
    """Turn SIGTERM/SIGINT into a cancel request on the given progress."""

    def __init__(self, progress: ScanProgress):
        self.progress = progress
        signal.signal(signal.SIGTERM, self._handler)
        signal.signal(signal.SIGINT, self._handler)

    def _handler(self, signum, frame):
        logger.warning(f"Shutdown requested (signal {signum})")
        self.progress.request_cancel()


def resolve_first_detected_down(
    status,
    previous: Optional[ScanRecord],
    now: datetime,
) -> Optional[datetime]:
    """
    Start of the current down streak.
    Kept from the previous scan while the site stays down, reset when it recovers.
    """
    if not is_down(status):
        return None
    if previous and previous.first_detected_down and is_down(previous.status):
        return previous.first_detected_down
    return now


def is_new_lead(result: WebsiteCheckResult, previous: Optional[ScanRecord]) -> bool:
    """A lead is new when a site that was up (or never checked) goes down."""
    was_up = previous is None or previous.status == WebsiteStatus.UP.value
    return bool(result.lead_type) and was_up and is_down(result.status)


def process_business(
    business: Business,
    db: Database,
    config: Config,
    progress: ScanProgress,
    now: datetime = None,
) -> ScanRecord:
    """Check one business, store the scan result, and update progress."""
    result = check_with_isolation(
        business.website_url,
        business.place_id,
        db=db,
        config=config,
    )

    now = now or datetime.now(timezone.utc)
    previous = db.get_latest_scan_result(business.place_id)
    first_detected_down = resolve_first_detected_down(result.status, previous, now)

    record = ScanRecord(
        place_id=business.place_id,
        status=result.status.value,
        status_detail=result.status_detail,
        platform_detected=result.platform_detected,
        lead_type=result.lead_type.value if result.lead_type else None,
        first_detected_down=first_detected_down,
        next_scan_date=get_next_scan_date(
            result.status, first_detected_down, config=config.scheduler, now=now
        ),
        scan_date=now,
    )
    record.id = db.insert_scan_result(record)

    progress.businesses_scanned += 1
    if is_new_lead(result, previous):
        progress.new_leads_found += 1
        logger.info(
            f"New lead: {business.name} | {business.website_url} | "
            f"{record.status} ({record.status_detail})"
        )
    else:
        logger.debug(f"{business.name}: {record.status}")

    return record


def _run(
    businesses: Iterable[Business],
    db: Database,
    config: Config,
    progress: ScanProgress,
    label: str,
    upsert: bool,
    sleep: Callable[[float], None],
) -> List[ScanRecord]:
    progress.start()
    run_id = db.start_scan_run()
    records: List[ScanRecord] = []

    with RunContext(logger, progress, label=label) as run_ctx:
        try:
            for index, business in enumerate(businesses):
                if progress.cancel_requested:
                    logger.warning("Cancel requested, stopping scan")
                    break
                if index >= config.scan.max_businesses:
                    logger.info(f"Reached max_businesses={config.scan.max_businesses}")
                    break
                if index > 0 and config.scan.delay_between_checks_seconds > 0:
                    sleep(config.scan.delay_between_checks_seconds)

                try:
                    if upsert:
                        db.upsert_business(business)
                    records.append(process_business(business, db, config, progress))
                except Exception as e:
                    logger.error(f"Error processing {business.name}: {e}")
                    run_ctx.record_error()

            progress.finish()
        except Exception as e:
            logger.exception(f"Fatal error in scan run: {e}")
            progress.finish(error=str(e))
        finally:
            db.complete_scan_run(
                run_id,
                status=progress.status,
                businesses_scanned=progress.businesses_scanned,
                new_leads_found=progress.new_leads_found,
                error=progress.error,
            )

    return records


def scan_businesses(
    businesses: Iterable[Business],
    db: Database,
    config: Config = None,
    progress: ScanProgress = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[ScanRecord]:
    """
    Store and check a batch of businesses, e.g. fresh places-search results.
    Checks run sequentially with config.scan.delay_between_checks_seconds between them.
    """
    config = config or Config()
    progress = progress if progress is not None else ScanProgress()
    return _run(businesses, db, config, progress, "scan", upsert=True, sleep=sleep)


def rescan_due_businesses(
    db: Database,
    config: Config = None,
    progress: ScanProgress = None,
    sleep: Callable[[float], None] = time.sleep,
    now: datetime = None,
) -> List[ScanRecord]:
    """Recheck every stored business whose next scan date has passed."""
    config = config or Config()
    progress = progress if progress is not None else ScanProgress()
    if progress.status == RUNNING:
        raise ScanInProgressError("Scan already in progress")
    due = db.get_businesses_due_for_rescan(now=now, limit=config.scan.max_businesses)
    logger.info(f"{len(due)} businesses due for rescan")
    return _run(due, db, config, progress, "rescan", upsert=False, sleep=sleep)
