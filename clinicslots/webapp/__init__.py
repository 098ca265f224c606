"""Flask application exposing booking and reporting endpoints."""

from __future__ import annotations

import datetime as dt
import logging
import secrets
from typing import Any, Callable
from zoneinfo import ZoneInfo

from flask import Flask, abort, jsonify, request

from clinicslots.config import Settings, load_settings
from clinicslots.dispatch import Channel, ReportDispatcher, build_channel
from clinicslots.ledger import (
    AllocationService,
    CapacityExceededError,
    CapacityPolicy,
    DuplicateBookingError,
    LedgerStore,
    ReportAggregator,
    RequestType,
    StoreError,
    report_date_for,
    select_store,
)

logger = logging.getLogger(__name__)

USER_MESSAGES = {
    CapacityExceededError: "There are no slots left for that date. Please choose another day.",
    DuplicateBookingError: "This patient already has an appointment on that date.",
}
STORE_FAILURE_MESSAGE = "Sorry, we could not register your request right now. Please try again later."


def _parse_date(raw: str | None, name: str) -> dt.date:
    if not raw:
        abort(400, description=f"{name} is required")
    try:
        return dt.date.fromisoformat(raw)
    except (TypeError, ValueError):
        abort(400, description=f"{name} must be YYYY-MM-DD")


def create_app(
    settings: Settings | None = None,
    *,
    store: LedgerStore | None = None,
    channel: Channel | None = None,
    today: Callable[[], dt.date] | None = None,
) -> Flask:
    """Create and configure the Flask application."""

    settings = settings or load_settings()
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key

    store = store or select_store(settings)
    policy = CapacityPolicy(settings.capacity_limits)
    allocation = AllocationService(store, policy, attempts=settings.allocation_attempts)
    clinic_tz = ZoneInfo(settings.clinic_timezone)
    aggregator = ReportAggregator(store, clinic_tz)
    dispatcher = ReportDispatcher(aggregator, channel or build_channel(settings), settings.report_dir)

    def clinic_today() -> dt.date:
        if today is not None:
            return today()
        return dt.datetime.now(clinic_tz).date()

    def require_secret() -> None:
        provided = request.args.get("secret", "")
        if not settings.cron_secret or not secrets.compare_digest(provided, settings.cron_secret):
            logger.warning("Rejected report trigger with an invalid secret")
            abort(401, description="Invalid secret")

    app.extensions["clinicslots"] = {
        "store": store,
        "allocation": allocation,
        "aggregator": aggregator,
        "dispatcher": dispatcher,
    }

    @app.errorhandler(400)
    @app.errorhandler(401)
    def client_error(exc: Any) -> Any:
        return jsonify({"error": exc.description}), exc.code

    @app.errorhandler(StoreError)
    def store_error(exc: StoreError) -> Any:
        logger.error("Ledger backend failure: %s", exc)
        return jsonify({"error": "store_unavailable", "message": STORE_FAILURE_MESSAGE}), 503

    @app.get("/")
    def index() -> Any:
        return f"Clinic slots service is up ({store.backend} ledger)."

    @app.post("/bookings")
    def create_booking() -> Any:
        payload = request.get_json(silent=True)
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            abort(400, description="Request body must be a JSON object")
        try:
            request_type = RequestType(payload.get("request_type"))
        except (TypeError, ValueError):
            abort(400, description="request_type must be one of " + ", ".join(t.value for t in RequestType))
        request_date = _parse_date(payload.get("date"), "date")
        patient_fields = payload.get("patient_fields") or {}
        if not isinstance(patient_fields, dict):
            abort(400, description="patient_fields must be an object")
        try:
            result = allocation.book_slot(
                request_type,
                request_date,
                str(payload["patient_id"]) if payload.get("patient_id") else None,
                patient_fields,
            )
        except ValueError as exc:
            abort(400, description=str(exc))
        if not result.ok:
            return (
                jsonify(
                    {
                        "error": result.status,
                        "message": USER_MESSAGES[type(result.error)],
                    }
                ),
                409,
            )
        return jsonify(result.record.to_dict()), 201

    @app.get("/reports/daily")
    def daily_report() -> Any:
        day = _parse_date(request.args.get("date"), "date")
        return jsonify(aggregator.daily(day).to_dict())

    @app.get("/reports/monthly")
    def monthly_report() -> Any:
        try:
            report = aggregator.monthly(request.args.get("month", ""))
        except ValueError as exc:
            abort(400, description=str(exc))
        return jsonify(report.to_dict())

    @app.post("/reports/daily/send")
    def send_daily_report() -> Any:
        require_secret()
        day = _parse_date(request.args.get("date"), "date")
        delivered = dispatcher.send_daily(day, manual=True)
        return jsonify({"date": day.isoformat(), "delivered": delivered})

    @app.post("/reports/monthly/send")
    def send_monthly_report() -> Any:
        require_secret()
        month = request.args.get("month", "")
        try:
            delivered = dispatcher.send_monthly(month)
        except ValueError as exc:
            abort(400, description=str(exc))
        return jsonify({"month": month, "delivered": delivered})

    @app.get("/trigger-report")
    def trigger_report() -> Any:
        require_secret()
        day = report_date_for(clinic_today())
        logger.info("Scheduled report triggered for %s", day.isoformat())
        dispatcher.send_daily(day)
        return "Report task accepted.", 202

    return app


__all__ = ["create_app"]
