"""Render categorized reports into a CSV artifact, one section per bucket."""

from __future__ import annotations

import csv
import re
from pathlib import Path

from clinicslots.ledger.reports import BUCKET_COLUMNS, BUCKET_TITLES, CategorizedReport


def report_filename(report: CategorizedReport, *, prefix: str = "Daily_Report") -> str:
    slug = re.sub(r"[^0-9A-Za-z]+", "-", report.period_label).strip("-")
    return f"{prefix}_{slug}.csv"


def save_csv_report(report: CategorizedReport, output_path: str | Path) -> Path:
    """Write ``report`` to ``output_path`` and return the path.

    Every bucket gets a title row and a header row, even when empty.
    """
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        for index, (request_type, columns) in enumerate(BUCKET_COLUMNS.items()):
            if index:
                writer.writerow([])
            writer.writerow([BUCKET_TITLES[request_type]])
            writer.writerow([header for _, header in columns])
            for row in report.rows(request_type):
                writer.writerow(["" if row[key] is None else row[key] for key, _ in columns])

    return path
