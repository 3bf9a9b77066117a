#!/usr/bin/env python3
"""
Command-line entry point for LeadScan.
Checks single URLs, scans imported businesses, rescans due businesses, and exports leads.
"""

from __future__ import annotations

import sys
import csv
import json
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from .config import load_config, validate_config, Config
from .logging_setup import setup_logging, get_logger
from .db import Database, Business
from .export import generate_csv, generate_xlsx
from .scanner import GracefulShutdown, ScanProgress, scan_businesses, rescan_due_businesses
from .website_checker import check_website

logger = get_logger("cli")


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not str(value).strip():
        return None
    return float(value)


def read_businesses_csv(path: Path) -> List[Business]:
    """
    Load businesses from a CSV with at least place_id and name columns.
    Rows missing either are skipped.
    """
    businesses = []
    with open(path, newline="", encoding="utf-8") as f:
        for line_no, row in enumerate(csv.DictReader(f), start=2):
            place_id = (row.get("place_id") or "").strip()
            name = (row.get("name") or "").strip()
            if not place_id or not name:
                logger.warning(f"{path}:{line_no}: missing place_id or name, skipped")
                continue
            businesses.append(Business(
                place_id=place_id,
                name=name,
                address=row.get("address") or None,
                phone=row.get("phone") or None,
                website_url=(row.get("website_url") or row.get("website") or "").strip() or None,
                category=row.get("category") or None,
                review_count=int(row.get("review_count") or 0),
                rating=_optional_float(row.get("rating")),
                latitude=_optional_float(row.get("latitude")),
                longitude=_optional_float(row.get("longitude")),
                business_status=row.get("business_status") or None,
            ))
    return businesses


def print_check(url: str, config: Config) -> int:
    """Diagnose one URL and print the result. Nothing is stored."""
    print(f"\nTesting: {url}\n")
    result = check_website(url, "cli-check", db=None, config=config)
    print("Result:")
    print(f"  Status: {result.status.value}")
    print(f"  Lead Type: {result.lead_type.value if result.lead_type else 'none'}")
    if result.status_detail:
        print(f"  Detail: {result.status_detail}")
    if result.platform_detected:
        print(f"  Platform: {result.platform_detected}")
    if result.social_links:
        print(f"  Social Links: {json.dumps(result.social_links)}")
    return 0


def print_stats(db: Database) -> int:
    stats = db.get_stats()
    print("Database Statistics:")
    print(f"  Total businesses: {stats['total_businesses']}")
    print(f"  Hot leads (down < 7 days): {stats['hot_leads']}")
    print("  By status:")
    for status, count in sorted(stats["by_status"].items()):
        print(f"    {status}: {count}")
    print("  By lead type:")
    for lead_type, count in sorted(stats["by_lead_type"].items()):
        print(f"    {lead_type}: {count}")
    if stats["recent_runs"]:
        last = stats["recent_runs"][0]
        print(
            f"  Last run: #{last['id']} ({last['status']}) "
            f"scanned={last['businesses_scanned']} new_leads={last['new_leads_found']}"
        )
    return 0


def export_leads(args: argparse.Namespace, db: Database):
    """Write current leads as CSV and/or XLSX with the CLI filters applied."""
    center_lat, center_lng = args.near if args.near else (None, None)
    leads = db.get_leads(
        lead_type=args.lead_type,
        status=args.status,
        center_lat=center_lat,
        center_lng=center_lng,
        max_distance=args.max_distance,
    )
    if not leads:
        print("No leads to export")
        return

    if args.export_csv:
        _, path = generate_csv(leads, columns=args.columns)
        print(f"Exported {len(leads)} leads to {path}")
    if args.export_xlsx:
        _, path = generate_xlsx(leads, columns=args.columns)
        print(f"Exported {len(leads)} leads to {path}")


def track_lead(args: argparse.Namespace, db: Database) -> int:
    place_id, status = args.track
    if not db.business_exists(place_id):
        print(f"Unknown business: {place_id}")
        return 1
    db.update_lead_tracking(place_id, status, args.notes)
    print(f"{place_id}: {status}")
    return 0


def run_scan(args: argparse.Namespace, config: Config, db: Database) -> int:
    progress = ScanProgress()
    GracefulShutdown(progress)

    if args.import_csv:
        businesses = read_businesses_csv(Path(args.import_csv))
        logger.info(f"Loaded {len(businesses)} businesses from {args.import_csv}")
        scan_businesses(businesses, db, config, progress=progress)
    else:
        rescan_due_businesses(db, config, progress=progress)

    print(
        f"Scan {progress.status}: {progress.businesses_scanned} scanned, "
        f"{progress.new_leads_found} new leads"
    )
    if progress.error:
        print(f"Error: {progress.error}")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="LeadScan website diagnosis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m src.run_scan --check-url example.com       # Diagnose one URL
  python -m src.run_scan --import-csv businesses.csv   # Store and scan businesses
  python -m src.run_scan --rescan                      # Recheck businesses that are due
  python -m src.run_scan --export-csv --lead-type fix  # Write leads CSV
  python -m src.run_scan --export-xlsx --near 30.27 -97.74 --max-distance 25
  python -m src.run_scan --track PLACE_ID contacted --notes "Left voicemail"
  python -m src.run_scan --stats                       # Show database stats
        """
    )
    parser.add_argument("--check-url", metavar="URL", help="Diagnose a single URL and exit")
    parser.add_argument("--import-csv", metavar="PATH", help="Upsert businesses from CSV and scan them")
    parser.add_argument("--rescan", action="store_true", help="Recheck businesses due for a scan")
    parser.add_argument("--max-businesses", type=int, help="Stop after this many checks")
    parser.add_argument("--export-csv", action="store_true", help="Write a CSV of current leads")
    parser.add_argument("--export-xlsx", action="store_true", help="Write an XLSX workbook of current leads")
    parser.add_argument("--lead-type", choices=["fix", "build", "social_only"], help="Filter exported leads")
    parser.add_argument("--status", help="Filter exported leads by website status")
    parser.add_argument("--columns", nargs="+", help="Columns to export")
    parser.add_argument("--near", nargs=2, type=float, metavar=("LAT", "LNG"),
                        help="Sort exported leads by distance from this point")
    parser.add_argument("--max-distance", type=float, metavar="MILES",
                        help="With --near, drop leads farther than this")
    parser.add_argument("--track", nargs=2, metavar=("PLACE_ID", "STATUS"),
                        help="Set the follow-up status of a lead, e.g. contacted")
    parser.add_argument("--notes", help="Notes stored with --track")
    parser.add_argument("--stats", action="store_true", help="Show database statistics and exit")
    parser.add_argument("--validate", action="store_true", help="Validate configuration and exit")

    args = parser.parse_args(argv)

    config = load_config()
    setup_logging(level=getattr(logging, config.log_level.upper(), logging.INFO))
    if args.max_businesses:
        config.scan.max_businesses = args.max_businesses

    errors = validate_config(config)
    if args.validate or errors:
        if errors:
            print("Configuration errors:")
            for error in errors:
                print(f"  - {error}")
            return 1
        print("Configuration valid")
        return 0

    if args.check_url:
        return print_check(args.check_url, config)

    exporting = args.export_csv or args.export_xlsx
    if not (args.stats or args.import_csv or args.rescan or exporting or args.track):
        parser.print_help()
        return 1
    if args.max_distance is not None and not args.near:
        parser.error("--max-distance requires --near")

    db = Database(config.database)
    try:
        if args.stats:
            return print_stats(db)

        if args.track:
            return track_lead(args, db)

        status = 0
        if args.import_csv or args.rescan:
            status = run_scan(args, config, db)

        if exporting:
            export_leads(args, db)
        return status
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
