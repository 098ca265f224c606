"""Build report artifacts and hand them to a delivery channel."""

from __future__ import annotations

import datetime as dt
import logging
import tempfile
from pathlib import Path
from typing import Protocol

from clinicslots.ledger.reports import CategorizedReport, ReportAggregator, month_bounds

from .render import report_filename, save_csv_report

logger = logging.getLogger(__name__)


class Channel(Protocol):
    def send_text(self, text: str) -> None: ...

    def send_file(self, path: Path, caption: str) -> None: ...


class LoggingChannel:
    """Fallback channel when no messaging credentials are configured."""

    def send_text(self, text: str) -> None:
        logger.info("Report message: %s", text)

    def send_file(self, path: Path, caption: str) -> None:
        logger.info("Report file %s ready (%s)", path, caption)


class ReportDispatcher:
    def __init__(self, aggregator: ReportAggregator, channel: Channel, report_dir: str | Path = "reports") -> None:
        self.aggregator = aggregator
        self.channel = channel
        self.report_dir = Path(report_dir)

    def _deliver(self, report: CategorizedReport, *, prefix: str, caption: str) -> None:
        self.report_dir.mkdir(parents=True, exist_ok=True)
        # One directory per delivery; overlapping runs for a period never share a file.
        with tempfile.TemporaryDirectory(dir=self.report_dir, prefix=f"{prefix}_") as workdir:
            path = save_csv_report(report, Path(workdir) / report_filename(report, prefix=prefix))
            self.channel.send_file(path, caption)
        logger.info("Report %s delivered and local file removed", path.name)

    def send_daily(self, day: dt.date, *, manual: bool = False) -> bool:
        """Send the report for ``day``; returns whether a file was delivered.

        Scheduled runs stay silent when there is nothing to report. Manual
        runs always answer in the channel, including on failure.
        """
        try:
            report = self.aggregator.daily(day)
            if report.is_empty:
                logger.info("No bookings for %s; nothing to send", day.isoformat())
                if manual:
                    self.channel.send_text(f"Report for {report.period_label}: no requests were registered.")
                return False
            self._deliver(
                report,
                prefix="Daily_Report",
                caption=f"Requests report for {report.period_label}.",
            )
            return True
        except Exception:
            logger.exception("Failed to build or send the daily report for %s", day.isoformat())
            if manual:
                self.channel.send_text("The report could not be generated. Please try again later.")
            return False

    def send_monthly(self, year_month: str) -> bool:
        month_bounds(year_month)
        try:
            report = self.aggregator.monthly(year_month)
            if report.is_empty:
                self.channel.send_text(f"Monthly report for {report.period_label}: no requests were registered.")
                return False
            self._deliver(
                report,
                prefix="Monthly_Report",
                caption=f"Monthly requests report for {report.period_label}.",
            )
            return True
        except Exception:
            logger.exception("Failed to build or send the monthly report for %s", year_month)
            self.channel.send_text("The monthly report could not be generated. Please try again later.")
            return False
