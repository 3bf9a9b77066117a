"""
Lead export for LeadScan.
Writes the lead table as CSV or as an XLSX workbook with labelled, selectable columns.
"""

import csv
import json
from io import BytesIO, StringIO
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from .config import OUTPUT_DIR
from .logging_setup import get_logger

logger = get_logger("export")


@dataclass(frozen=True)
class Column:
    key: str
    label: str
    required: bool = False
    width: int = 12  # XLSX column width in characters


AVAILABLE_COLUMNS: List[Column] = [
    Column("name", "Business Name", required=True, width=25),
    Column("status", "Status", required=True),
    Column("lead_type", "Lead Type", required=True),
    Column("phone", "Phone", width=15),
    Column("address", "Address", width=30),
    Column("website_url", "Website URL", width=30),
    Column("category", "Category"),
    Column("status_detail", "Status Detail", width=25),
    Column("platform_detected", "Platform"),
    Column("days_down", "Days Down"),
    Column("distance_miles", "Distance (miles)"),
    Column("review_count", "Review Count"),
    Column("rating", "Rating"),
    Column("social_links", "Social Links", width=30),
    Column("notes", "Notes", width=30),
    Column("latitude", "Latitude"),
    Column("longitude", "Longitude"),
    Column("tracking_status", "Tracking Status"),
    Column("first_detected_down", "First Detected Down"),
    Column("next_scan_date", "Next Scan Date"),
    Column("place_id", "Place ID"),
    Column("business_status", "Business Status"),
]

DEFAULT_COLUMNS = [
    "name",
    "phone",
    "address",
    "website_url",
    "status",
    "status_detail",
    "lead_type",
    "days_down",
]

EXPORT_FORMATS = ("csv", "xlsx")


def _sanitize_csv_value(value: Any) -> Any:
    """Prefix risky spreadsheet formulas with a single quote.

    >>> _sanitize_csv_value("=HYPERLINK('https://example.com')")
    "'=HYPERLINK('https://example.com')"
    >>> _sanitize_csv_value(None)
    ''
    """
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if isinstance(value, str) and value.startswith(("=", "+", "-", "@")):
        return f"'{value}"
    return value


def select_columns(columns: Optional[List[str]] = None) -> List[Column]:
    """Requested columns in table order, always including the required ones."""
    wanted = set(columns or DEFAULT_COLUMNS)
    return [col for col in AVAILABLE_COLUMNS if col.required or col.key in wanted]


def _default_path(extension: str) -> Path:
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return OUTPUT_DIR / f"leads_{date_str}.{extension}"


def generate_csv(
    leads: List[Dict[str, Any]],
    columns: Optional[List[str]] = None,
    output_path: Path = None,
) -> Tuple[str, Path]:
    """
    Generate CSV content from leads.
    Returns (csv_content, file_path).
    """
    output_path = output_path or _default_path("csv")
    selected = select_columns(columns)

    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow([col.label for col in selected])
    for lead in leads:
        writer.writerow([_sanitize_csv_value(lead.get(col.key)) for col in selected])

    csv_content = buffer.getvalue()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(csv_content, encoding="utf-8")
    logger.info(f"Generated CSV with {len(leads)} leads: {output_path}")

    return csv_content, output_path


def generate_xlsx(
    leads: List[Dict[str, Any]],
    columns: Optional[List[str]] = None,
    output_path: Path = None,
) -> Tuple[bytes, Path]:
    """
    Generate a one-sheet XLSX workbook from leads.
    An empty lead list gives a sheet holding only "No data".
    Returns (xlsx_bytes, file_path).
    """
    output_path = output_path or _default_path("xlsx")
    selected = select_columns(columns)

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Leads"

    if not leads:
        sheet.append(["No data"])
    else:
        sheet.append([col.label for col in selected])
        for lead in leads:
            # openpyxl stores strings starting with "=" as formulas
            sheet.append([_sanitize_csv_value(lead.get(col.key)) for col in selected])
        for index, col in enumerate(selected, start=1):
            sheet.column_dimensions[get_column_letter(index)].width = col.width

    buffer = BytesIO()
    workbook.save(buffer)
    content = buffer.getvalue()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(content)
    logger.info(f"Generated XLSX with {len(leads)} leads: {output_path}")

    return content, output_path
