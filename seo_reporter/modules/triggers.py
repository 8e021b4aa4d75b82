"""
Trigger surface for the ranking and reporting pipeline.

Every handler takes a plain request dictionary and returns a plain
response dictionary of the form ``{"success": bool, ...}``. The CLI and
the Celery tasks are thin wrappers around these handlers.

Two ranking modes are supported:

* manual    -- ``{"manual": true, "kind": "keyword", "entity_id": 3}``
  refreshes one entity and reports its error directly.
* scheduled -- ``{}`` or ``{"website_id": 1}`` refreshes every active
  entity (or every entity of one website) and returns a per-entity list.

Request validation happens before anything is fetched or written.
"""

from __future__ import annotations

import datetime
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from loguru import logger

from seo_reporter.config.settings import REPORT_CONFIG
from seo_reporter.database.models import KEYWORD, TRACKABLE_KINDS, EntityRef
from seo_reporter.database.store import RankingStore
from seo_reporter.errors import SeoReporterError, ValidationError
from seo_reporter.modules.rank_fetcher import RankSource
from seo_reporter.modules.ranking_updater import RankingUpdater, summarize_results
from seo_reporter.modules.report_generator import Analyzer, ReportGenerator, serialize_report
from seo_reporter.modules.report_renderer import EmailTransport, ReportMailer
from seo_reporter.utils.helpers import ranking_trend, utcnow, window_trend


@contextmanager
def _store_scope(store: Optional[RankingStore]) -> Iterator[RankingStore]:
    if store is not None:
        yield store
        return
    with RankingStore() as owned:
        yield owned


def _failure(exc: SeoReporterError, **extra) -> dict:
    return {"success": False, **extra, **exc.to_dict()}


def _coerce_id(value, field: str) -> int:
    if value is None or value == "" or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer, got {value!r}")


def _payload(payload: Optional[dict]) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request payload must be an object")
    return payload


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------

def handle_ranking_request(
    payload: Optional[dict] = None,
    *,
    store: Optional[RankingStore] = None,
    rank_source: Optional[RankSource] = None,
    cancel_event: Optional[threading.Event] = None,
) -> dict:
    """Refresh rankings, manually for one entity or as a scheduled batch."""
    try:
        payload = _payload(payload)
        manual = bool(payload.get("manual")) or "entity_id" in payload
        if manual:
            kind = payload.get("kind") or KEYWORD
            if kind not in TRACKABLE_KINDS:
                raise ValidationError(f"kind must be one of {', '.join(TRACKABLE_KINDS)}")
            ref = EntityRef(kind, _coerce_id(payload.get("entity_id"), "entity_id"))
        else:
            website_id = payload.get("website_id")
            website_id = _coerce_id(website_id, "website_id") if website_id is not None else None
    except ValidationError as exc:
        return _failure(exc)

    with _store_scope(store) as scoped:
        updater = RankingUpdater(scoped, rank_source=rank_source)
        if manual:
            try:
                result = updater.update_entity(ref)
            except SeoReporterError as exc:
                logger.error("Manual ranking update for {} failed: {}", ref, exc.message)
                return _failure(exc, mode="manual", kind=ref.kind, entity_id=ref.id)
            return {"success": True, "mode": "manual", "result": result.to_dict()}

        try:
            if website_id is not None:
                results = updater.update_website(website_id, cancel_event)
            else:
                results = updater.update_all_active(cancel_event)
        except SeoReporterError as exc:
            return _failure(exc, mode="scheduled")
        return {"success": True, "mode": "scheduled", **summarize_results(results)}


def handle_history_request(
    payload: Optional[dict] = None,
    *,
    store: Optional[RankingStore] = None,
    now: Optional[datetime.datetime] = None,
) -> dict:
    """Ranking history of one entity over the last ``days`` days."""
    try:
        payload = _payload(payload)
        kind = payload.get("kind") or KEYWORD
        if kind not in TRACKABLE_KINDS:
            raise ValidationError(f"kind must be one of {', '.join(TRACKABLE_KINDS)}")
        ref = EntityRef(kind, _coerce_id(payload.get("entity_id"), "entity_id"))
        days = _coerce_id(payload.get("days", REPORT_CONFIG["history_window_days"]), "days")
        if days < 1:
            raise ValidationError("days must be >= 1")
    except ValidationError as exc:
        return _failure(exc)

    start = (now or utcnow()) - datetime.timedelta(days=days)
    with _store_scope(store) as scoped:
        try:
            entity = scoped.get_trackable(ref)
            points = scoped.ranking_history(ref, start=start)
        except SeoReporterError as exc:
            return _failure(exc)

        current = ranking_trend(entity.current_ranking, entity.previous_ranking)
        window = window_trend(p.ranking for p in points)
        return {
            "success": True,
            "kind": ref.kind,
            "entity_id": ref.id,
            "keyword": entity.keyword,
            "current_ranking": entity.current_ranking,
            "previous_ranking": entity.previous_ranking,
            "trend": {"direction": current.direction, "change": current.change},
            "window_days": days,
            "window_trend": {"direction": window.direction, "change": window.change},
            "history": [
                {
                    "ranking": p.ranking,
                    "search_volume": p.search_volume,
                    "checked_at": p.checked_at.isoformat(),
                }
                for p in points
            ],
        }


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def handle_report_request(
    payload: Optional[dict] = None,
    *,
    store: Optional[RankingStore] = None,
    rank_source: Optional[RankSource] = None,
    analyzer: Optional[Analyzer] = None,
    transport: Optional[EmailTransport] = None,
) -> dict:
    """Generate one website's report, optionally emailing it (``send``).

    A failed delivery does not undo the generated report; the response then
    carries both the report and the delivery error.
    """
    try:
        payload = _payload(payload)
        website_id = _coerce_id(payload.get("website_id"), "website_id")
    except ValidationError as exc:
        return _failure(exc)

    with _store_scope(store) as scoped:
        generator = ReportGenerator(
            scoped, updater=RankingUpdater(scoped, rank_source=rank_source), analyzer=analyzer,
        )
        try:
            report = generator.generate_report(website_id)
        except SeoReporterError as exc:
            logger.error("Report generation for website {} failed: {}", website_id, exc.message)
            return _failure(exc, website_id=website_id)

        response = {"success": True, "website_id": website_id, "report": serialize_report(report)}
        if not payload.get("send"):
            return response

        try:
            sent = ReportMailer(scoped, transport=transport).send_latest_report(website_id)
        except SeoReporterError as exc:
            return _failure(exc, website_id=website_id, report=response["report"])
        response["email"] = sent.to_dict()
        return response


def handle_latest_report_request(
    payload: Optional[dict] = None, *, store: Optional[RankingStore] = None,
) -> dict:
    """Return the newest stored report of a website without generating one."""
    try:
        payload = _payload(payload)
        website_id = _coerce_id(payload.get("website_id"), "website_id")
    except ValidationError as exc:
        return _failure(exc)

    with _store_scope(store) as scoped:
        try:
            report = ReportGenerator(scoped).get_latest_report(website_id)
        except SeoReporterError as exc:
            return _failure(exc, website_id=website_id)
        return {"success": True, "website_id": website_id, "report": serialize_report(report)}


def handle_send_request(
    payload: Optional[dict] = None,
    *,
    store: Optional[RankingStore] = None,
    transport: Optional[EmailTransport] = None,
) -> dict:
    """Email the latest report of a website to its notification address."""
    try:
        payload = _payload(payload)
        website_id = _coerce_id(payload.get("website_id"), "website_id")
    except ValidationError as exc:
        return _failure(exc)

    with _store_scope(store) as scoped:
        try:
            sent = ReportMailer(scoped, transport=transport).send_latest_report(website_id)
        except SeoReporterError as exc:
            return _failure(exc, website_id=website_id)
        return {"success": True, "website_id": website_id, "email": sent.to_dict()}


def handle_scheduled_reports(
    payload: Optional[dict] = None,
    *,
    store: Optional[RankingStore] = None,
    rank_source: Optional[RankSource] = None,
    analyzer: Optional[Analyzer] = None,
    transport: Optional[EmailTransport] = None,
    now: Optional[datetime.datetime] = None,
) -> dict:
    """Generate (and by default email) every due report of active websites.

    Payload options: ``only_due`` (default true) and ``send`` (default true).
    """
    try:
        payload = _payload(payload)
    except ValidationError as exc:
        return _failure(exc)
    only_due = bool(payload.get("only_due", True))
    send = bool(payload.get("send", True))

    with _store_scope(store) as scoped:
        generator = ReportGenerator(
            scoped, updater=RankingUpdater(scoped, rank_source=rank_source), analyzer=analyzer,
        )
        results = generator.generate_due_reports(now=now, only_due=only_due)

        if send:
            mailer = None
            for entry in results:
                if not entry["success"]:
                    continue
                mailer = mailer or ReportMailer(scoped, transport=transport)
                try:
                    sent = mailer.send_latest_report(entry["website_id"])
                    entry["email_sent"] = True
                    entry["recipient"] = sent.recipient
                except SeoReporterError as exc:
                    entry["email_sent"] = False
                    entry["email_error"] = exc.to_dict()

    processed = sum(1 for r in results if r["success"])
    return {"success": True, "processed": processed, "total": len(results), "results": results}
