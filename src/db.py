"""
SQLite database layer for LeadScan.
Stores businesses, per-check scan results, and scan run history.
"""

import math
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Dict, Any
from contextlib import contextmanager
from dataclasses import dataclass

from .config import DatabaseConfig
from .logging_setup import get_logger

logger = get_logger("db")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db_time(value) -> Optional[str]:
    """Timestamps are stored as ISO-8601 UTC text so they sort and compare as strings."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


EARTH_RADIUS_MILES = 3959


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass
class Business:
    """A business discovered by the places search."""
    place_id: str  # Places API ID - stable identifier
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    website_url: Optional[str] = None
    category: Optional[str] = None
    review_count: int = 0
    rating: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    business_status: Optional[str] = None
    social_links: Optional[str] = None  # JSON object of platform -> URL


@dataclass
class ScanRecord:
    """One persisted website check."""
    place_id: str
    status: str
    status_detail: Optional[str] = None
    platform_detected: Optional[str] = None
    lead_type: Optional[str] = None
    first_detected_down: Optional[datetime] = None
    next_scan_date: Optional[datetime] = None
    scan_date: Optional[datetime] = None
    id: Optional[int] = None


SCHEMA = """
-- Businesses found by the places search
CREATE TABLE IF NOT EXISTS businesses (
    place_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    address TEXT,
    phone TEXT,
    website_url TEXT,
    category TEXT,
    review_count INTEGER DEFAULT 0,
    rating REAL,
    latitude REAL,
    longitude REAL,
    business_status TEXT,
    social_links TEXT,
    date_first_scanned TEXT NOT NULL
);

-- One row per website check
CREATE TABLE IF NOT EXISTS scan_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    place_id TEXT NOT NULL REFERENCES businesses(place_id),
    scan_date TEXT NOT NULL,
    status TEXT NOT NULL,
    status_detail TEXT,
    platform_detected TEXT,
    lead_type TEXT,
    first_detected_down TEXT,
    next_scan_date TEXT
);

CREATE INDEX IF NOT EXISTS idx_scan_results_place_id ON scan_results(place_id);
CREATE INDEX IF NOT EXISTS idx_scan_results_status ON scan_results(status);
CREATE INDEX IF NOT EXISTS idx_scan_results_lead_type ON scan_results(lead_type);
CREATE INDEX IF NOT EXISTS idx_businesses_website ON businesses(website_url);

-- Run history: tracks each scan run
CREATE TABLE IF NOT EXISTS scan_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    status TEXT NOT NULL DEFAULT 'running',
    businesses_scanned INTEGER DEFAULT 0,
    new_leads_found INTEGER DEFAULT 0,
    error_message TEXT
);

-- Sales follow-up state, one row per business
CREATE TABLE IF NOT EXISTS lead_tracking (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    place_id TEXT NOT NULL UNIQUE REFERENCES businesses(place_id),
    status TEXT NOT NULL DEFAULT 'new',
    notes TEXT,
    updated_at TEXT NOT NULL
);
"""

# Latest scan row per business
LATEST_SCAN_JOIN = """
    INNER JOIN scan_results sr ON sr.id = (
        SELECT id FROM scan_results
        WHERE place_id = b.place_id
        ORDER BY scan_date DESC, id DESC
        LIMIT 1
    )
"""


class Database:
    """
    SQLite database manager for businesses and scan history.

    - Connection caching (reuses single connection per instance)
    - WAL mode for better concurrent access
    - Proper timeout handling
    """

    # Connection timeout in seconds
    CONNECTION_TIMEOUT = 30.0

    def __init__(self, config: DatabaseConfig = None):
        self.config = config or DatabaseConfig()
        self.db_path = self.config.db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create a database connection."""
        if self._conn is not None:
            try:
                # Test connection is still valid
                self._conn.execute("SELECT 1")
                return self._conn
            except sqlite3.Error:
                self._conn = None

        conn = sqlite3.connect(
            self.db_path,
            timeout=self.CONNECTION_TIMEOUT,
            isolation_level="DEFERRED",
        )
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA busy_timeout=30000")

        self._conn = conn
        return conn

    def _init_schema(self):
        """Initialize database schema."""
        with self._connect() as conn:
            conn.executescript(SCHEMA)
            logger.info(f"Database initialized at {self.db_path}")

    @contextmanager
    def _connect(self):
        """
        Context manager for database transactions.

        Uses cached connection and handles transaction lifecycle.
        """
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def close(self):
        """Close the database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                pass
            self._conn = None

    def __del__(self):
        self.close()

    # --- businesses ---

    def upsert_business(self, business: Business):
        """Insert or update a business. Existing social links survive when none are given."""
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO businesses (
                    place_id, name, address, phone, website_url, category,
                    review_count, rating, latitude, longitude, business_status,
                    social_links, date_first_scanned
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(place_id) DO UPDATE SET
                    name = excluded.name,
                    address = excluded.address,
                    phone = excluded.phone,
                    website_url = excluded.website_url,
                    category = excluded.category,
                    review_count = excluded.review_count,
                    rating = excluded.rating,
                    latitude = excluded.latitude,
                    longitude = excluded.longitude,
                    business_status = excluded.business_status,
                    social_links = COALESCE(excluded.social_links, businesses.social_links)
            """, (
                business.place_id, business.name, business.address, business.phone,
                business.website_url, business.category, business.review_count or 0,
                business.rating, business.latitude, business.longitude,
                business.business_status, business.social_links, _to_db_time(_now()),
            ))

    def get_business(self, place_id: str) -> Optional[Business]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM businesses WHERE place_id = ?", (place_id,)
            ).fetchone()
        return self._row_to_business(row) if row else None

    def business_exists(self, place_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM businesses WHERE place_id = ?", (place_id,)
            ).fetchone()
        return row is not None

    def update_business_social_links(self, place_id: str, social_links_json: str):
        """Overwrite the stored social links of a business (last write wins)."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE businesses SET social_links = ? WHERE place_id = ?",
                (social_links_json, place_id),
            )

    def get_businesses_due_for_rescan(self, now: datetime = None, limit: int = None) -> List[Business]:
        """Businesses never scanned, or whose latest scan is due."""
        now_str = _to_db_time(now or _now())
        query = """
            SELECT b.* FROM businesses b
            LEFT JOIN scan_results sr ON sr.id = (
                SELECT id FROM scan_results
                WHERE place_id = b.place_id
                ORDER BY scan_date DESC, id DESC
                LIMIT 1
            )
            WHERE sr.id IS NULL
               OR sr.next_scan_date IS NULL
               OR sr.next_scan_date <= ?
            ORDER BY b.place_id
        """
        params: list = [now_str]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_business(row) for row in rows]

    @staticmethod
    def _row_to_business(row: sqlite3.Row) -> Business:
        return Business(
            place_id=row["place_id"],
            name=row["name"],
            address=row["address"],
            phone=row["phone"],
            website_url=row["website_url"],
            category=row["category"],
            review_count=row["review_count"] or 0,
            rating=row["rating"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            business_status=row["business_status"],
            social_links=row["social_links"],
        )

    # --- scan results ---

    def insert_scan_result(self, record: ScanRecord) -> int:
        """Append a scan result. Returns the new row id."""
        scan_date = record.scan_date or _now()
        with self._connect() as conn:
            cursor = conn.execute("""
                INSERT INTO scan_results (
                    place_id, scan_date, status, status_detail, platform_detected,
                    lead_type, first_detected_down, next_scan_date
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.place_id, _to_db_time(scan_date), record.status,
                record.status_detail, record.platform_detected, record.lead_type,
                _to_db_time(record.first_detected_down), _to_db_time(record.next_scan_date),
            ))
            return cursor.lastrowid

    def get_latest_scan_result(self, place_id: str) -> Optional[ScanRecord]:
        with self._connect() as conn:
            row = conn.execute("""
                SELECT * FROM scan_results
                WHERE place_id = ?
                ORDER BY scan_date DESC, id DESC
                LIMIT 1
            """, (place_id,)).fetchone()
        if not row:
            return None
        return ScanRecord(
            id=row["id"],
            place_id=row["place_id"],
            status=row["status"],
            status_detail=row["status_detail"],
            platform_detected=row["platform_detected"],
            lead_type=row["lead_type"],
            first_detected_down=_from_db_time(row["first_detected_down"]),
            next_scan_date=_from_db_time(row["next_scan_date"]),
            scan_date=_from_db_time(row["scan_date"]),
        )

    def get_leads(
        self,
        lead_type: str = None,
        status: str = None,
        now: datetime = None,
        center_lat: float = None,
        center_lng: float = None,
        max_distance: float = None,
    ) -> List[Dict[str, Any]]:
        """
        Businesses whose latest scan carries a lead type, with their follow-up state.
        Leads first seen down within fresh_lead_days sort first, then by review count.

        With a center point each lead gets distance_miles (None without coordinates)
        and the list is re-sorted nearest first. max_distance drops leads farther
        away but keeps those with no coordinates.
        """
        now = now or _now()
        fresh_cutoff = _to_db_time(now - timedelta(days=self.config.fresh_lead_days))

        query = f"""
            SELECT b.*, sr.status, sr.status_detail, sr.platform_detected, sr.lead_type,
                   sr.first_detected_down, sr.next_scan_date, sr.scan_date,
                   lt.status AS tracking_status, lt.notes
            FROM businesses b
            {LATEST_SCAN_JOIN}
            LEFT JOIN lead_tracking lt ON lt.place_id = b.place_id
            WHERE sr.lead_type IS NOT NULL
        """
        params: list = []
        if lead_type:
            query += " AND sr.lead_type = ?"
            params.append(lead_type)
        if status:
            query += " AND sr.status = ?"
            params.append(status)
        query += """
            ORDER BY
                CASE WHEN sr.first_detected_down >= ? THEN 0 ELSE 1 END,
                b.review_count DESC,
                b.place_id
        """
        params.append(fresh_cutoff)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        leads = []
        for row in rows:
            lead = dict(row)
            first_down = _from_db_time(lead.get("first_detected_down"))
            lead["days_down"] = (now - first_down).days if first_down else None
            leads.append(lead)

        if center_lat is None or center_lng is None:
            return leads

        for lead in leads:
            if lead["latitude"] is None or lead["longitude"] is None:
                lead["distance_miles"] = None
            else:
                lead["distance_miles"] = round(haversine_miles(
                    center_lat, center_lng, lead["latitude"], lead["longitude"],
                ), 1)
        if max_distance is not None:
            leads = [
                lead for lead in leads
                if lead["distance_miles"] is None or lead["distance_miles"] <= max_distance
            ]
        # Stable sort: ties keep the freshness/review order
        leads.sort(key=lambda lead: (lead["distance_miles"] is None, lead["distance_miles"] or 0))
        return leads

    # --- lead tracking ---

    def update_lead_tracking(self, place_id: str, status: str, notes: str = None):
        """Set the follow-up status of a lead. Existing notes survive when none are given."""
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO lead_tracking (place_id, status, notes, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(place_id) DO UPDATE SET
                    status = excluded.status,
                    notes = COALESCE(excluded.notes, lead_tracking.notes),
                    updated_at = excluded.updated_at
            """, (place_id, status, notes, _to_db_time(_now())))

    # --- scan runs ---

    def start_scan_run(self) -> int:
        """Record start of a scan run. Returns the run id."""
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO scan_runs (started_at, status) VALUES (?, 'running')",
                (_to_db_time(_now()),)
            )
            return cursor.lastrowid

    def complete_scan_run(
        self,
        run_id: int,
        status: str,
        businesses_scanned: int,
        new_leads_found: int,
        error: str = None,
    ):
        """Record completion of a scan run."""
        with self._connect() as conn:
            conn.execute("""
                UPDATE scan_runs SET
                    completed_at = ?,
                    status = ?,
                    businesses_scanned = ?,
                    new_leads_found = ?,
                    error_message = ?
                WHERE id = ?
            """, (
                _to_db_time(_now()), status, businesses_scanned,
                new_leads_found, error, run_id,
            ))

    def get_stats(self, now: datetime = None) -> Dict[str, Any]:
        """Get database statistics."""
        now = now or _now()
        fresh_cutoff = _to_db_time(now - timedelta(days=self.config.fresh_lead_days))

        with self._connect() as conn:
            total_businesses = conn.execute("SELECT COUNT(*) FROM businesses").fetchone()[0]

            by_status = {
                row["status"]: row["count"]
                for row in conn.execute(f"""
                    SELECT sr.status AS status, COUNT(*) AS count
                    FROM businesses b {LATEST_SCAN_JOIN}
                    GROUP BY sr.status
                """).fetchall()
            }
            by_lead_type = {
                row["lead_type"]: row["count"]
                for row in conn.execute(f"""
                    SELECT sr.lead_type AS lead_type, COUNT(*) AS count
                    FROM businesses b {LATEST_SCAN_JOIN}
                    WHERE sr.lead_type IS NOT NULL
                    GROUP BY sr.lead_type
                """).fetchall()
            }
            hot_leads = conn.execute(f"""
                SELECT COUNT(*) FROM businesses b {LATEST_SCAN_JOIN}
                WHERE sr.lead_type IS NOT NULL AND sr.first_detected_down >= ?
            """, (fresh_cutoff,)).fetchone()[0]
            recent_runs = conn.execute("""
                SELECT id, started_at, completed_at, status, businesses_scanned, new_leads_found
                FROM scan_runs ORDER BY started_at DESC, id DESC LIMIT 10
            """).fetchall()

        return {
            "total_businesses": total_businesses,
            "by_status": by_status,
            "by_lead_type": by_lead_type,
            "hot_leads": hot_leads,
            "recent_runs": [dict(row) for row in recent_runs],
        }


