"""
Report Renderer & Dispatcher
============================

Turns the latest report snapshot, the current keyword / competitor data
and the recent ranking history into an HTML email (with a plain-text
fallback) and hands it to an email transport.

Dispatch is a single attempt. Retrying is left to the caller, e.g. the
Celery task that scheduled the send.
"""

from __future__ import annotations

import datetime
import html
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr
from typing import Callable, Iterable, Optional, Protocol

from loguru import logger
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import From, Mail

from seo_reporter.config.settings import (
    EMAIL_TIMEOUT,
    REPORT_CONFIG,
    SENDGRID_API_KEY,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
)
from seo_reporter.database.models import (
    Competitor,
    CompetitorKeyword,
    EntityRef,
    Keyword,
    SeoReport,
    Website,
)
from seo_reporter.database.store import RankingStore
from seo_reporter.errors import DeliveryError, NotFoundError, ValidationError
from seo_reporter.utils.helpers import (
    TREND_DOWN,
    TREND_UP,
    Trend,
    format_ranking_change,
    ranking_trend,
    utcnow,
    window_trend,
)

_TREND_STYLE = {
    TREND_UP: ("▲", "#10b981"),
    TREND_DOWN: ("▼", "#ef4444"),
}
_CELL = "padding: 8px; border: 1px solid #ddd;"
_CELL_CENTER = _CELL + " text-align: center;"
_HEAD = "padding: 12px; text-align: left;"


@dataclass
class RenderedReport:
    subject: str
    html: str
    text: str
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    recipient: str
    subject: str
    sent_at: datetime.datetime
    success: bool = True

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "recipient": self.recipient,
            "subject": self.subject,
            "sent_at": self.sent_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _rank(value: Optional[int]) -> str:
    return str(value) if value is not None else "--"


def _score(value: Optional[int]) -> str:
    return str(value) if value is not None else "--"


def _trend_dict(trend: Trend) -> dict:
    return {"direction": trend.direction, "change": trend.change}


def _trend_label(trend: dict) -> str:
    arrow, _ = _TREND_STYLE.get(trend["direction"], ("→", None))
    if trend["change"] is None:
        return f"{arrow} n/a"
    return f"{arrow} {abs(trend['change'])}" if trend["change"] else arrow


def _trend_cell(trend: dict) -> str:
    _, color = _TREND_STYLE.get(trend["direction"], ("→", "#6b7280"))
    return f'<td style="{_CELL_CENTER} color: {color};">{html.escape(_trend_label(trend))}</td>'


def _placeholder_row(colspan: int, message: str) -> str:
    return f'<tr><td colspan="{colspan}" style="{_CELL_CENTER}">{html.escape(message)}</td></tr>'


def build_report_data(
    website: Website,
    report: SeoReport,
    keywords: Iterable[Keyword],
    competitors: Iterable[Competitor],
    competitor_keywords: Iterable[CompetitorKeyword],
    history: Optional[dict] = None,
    window_days: int = REPORT_CONFIG["history_window_days"],
) -> dict:
    """Collect every row the report shows, trends included."""
    history = history or {}
    competitors = list(competitors)
    names = {c.id: c.display_name for c in competitors}

    def window(ref: EntityRef) -> Optional[dict]:
        points = history.get(ref)
        if not points:
            return None
        trend = window_trend(p.ranking for p in points)
        return {"points": len(points), **_trend_dict(trend)}

    keyword_rows = [
        {
            "keyword": k.keyword,
            "current_ranking": k.current_ranking,
            "previous_ranking": k.previous_ranking,
            "trend": _trend_dict(ranking_trend(k.current_ranking, k.previous_ranking)),
            "window_trend": window(k.ref),
        }
        for k in keywords
    ]
    competitor_rows = [
        {
            "competitor": c.display_name,
            "overall_score": c.overall_score,
            "speed_score": c.speed_score,
            "backlinks_count": c.backlinks_count,
        }
        for c in competitors
    ]
    competitor_keyword_rows = [
        {
            "competitor": names.get(ck.competitor_id, str(ck.competitor_id)),
            "keyword": ck.keyword,
            "current_ranking": ck.current_ranking,
            "previous_ranking": ck.previous_ranking,
            "trend": _trend_dict(ranking_trend(ck.current_ranking, ck.previous_ranking)),
            "window_trend": window(ck.ref),
        }
        for ck in competitor_keywords
    ]

    return {
        "website": website.display_name,
        "website_url": website.url,
        "report_id": report.id,
        "report_date": report.report_date.isoformat() if report.report_date else None,
        "created_at": report.created_at.isoformat() if report.created_at else None,
        "scores": {
            "overall_score": report.overall_score,
            "speed_score": report.speed_score,
            "backlinks_count": report.backlinks_count,
            "structure_issues_count": report.structure_issues_count,
        },
        "window_days": window_days,
        "keywords": keyword_rows,
        "competitors": competitor_rows,
        "competitor_keywords": competitor_keyword_rows,
    }


def _render_html(data: dict) -> str:
    scores = data["scores"]
    days = data["window_days"]

    if data["keywords"]:
        keyword_rows = "".join(
            f"<tr>"
            f'<td style="{_CELL}">{html.escape(row["keyword"])}</td>'
            f'<td style="{_CELL_CENTER}">{_rank(row["current_ranking"])}</td>'
            f'<td style="{_CELL_CENTER}">{_rank(row["previous_ranking"])}</td>'
            f'{_trend_cell(row["trend"])}'
            f"</tr>"
            for row in data["keywords"]
        )
    else:
        keyword_rows = _placeholder_row(4, "No keyword data")

    if data["competitors"]:
        competitor_rows = "".join(
            f"<tr>"
            f'<td style="{_CELL}">{html.escape(row["competitor"])}</td>'
            f'<td style="{_CELL_CENTER}">{_score(row["overall_score"])}</td>'
            f'<td style="{_CELL_CENTER}">{_score(row["speed_score"])}</td>'
            f'<td style="{_CELL_CENTER}">{_score(row["backlinks_count"])}</td>'
            f"</tr>"
            for row in data["competitors"]
        )
    else:
        competitor_rows = _placeholder_row(4, "No competitor data")

    if data["competitor_keywords"]:
        competitor_keyword_rows = "".join(
            f"<tr>"
            f'<td style="{_CELL}">{html.escape(row["competitor"])}</td>'
            f'<td style="{_CELL}">{html.escape(row["keyword"])}</td>'
            f'<td style="{_CELL_CENTER}">{_rank(row["current_ranking"])}</td>'
            f'{_trend_cell(row["trend"])}'
            f"</tr>"
            for row in data["competitor_keywords"]
        )
    else:
        competitor_keyword_rows = _placeholder_row(4, "No competitor keyword data")

    windowed = [r for r in data["keywords"] + data["competitor_keywords"] if r["window_trend"]]
    if windowed:
        window_rows = "".join(
            f"<tr>"
            f'<td style="{_CELL}">{html.escape(row.get("competitor", data["website"]))}</td>'
            f'<td style="{_CELL}">{html.escape(row["keyword"])}</td>'
            f'<td style="{_CELL_CENTER}">{row["window_trend"]["points"]}</td>'
            f'{_trend_cell(row["window_trend"])}'
            f"</tr>"
            for row in windowed
        )
    else:
        window_rows = _placeholder_row(4, f"No ranking history in the last {days} days")

    def card(label: str, value: Optional[int], color: str) -> str:
        return (
            f'<div style="background: white; padding: 15px; border-radius: 6px; margin-bottom: 10px;">'
            f'<div style="font-size: 14px; color: #666;">{label}</div>'
            f'<div style="font-size: 32px; font-weight: bold; color: {color};">{_score(value)}</div>'
            f"</div>"
        )

    def table(headers: list[str], body: str) -> str:
        head = "".join(f'<th style="{_HEAD}">{h}</th>' for h in headers)
        return (
            f'<table style="width: 100%; border-collapse: collapse; background: white;">'
            f'<thead><tr style="background: #667eea; color: white;">{head}</tr></thead>'
            f"<tbody>{body}</tbody></table>"
        )

    return (
        f'<!DOCTYPE html><html><head><meta charset="utf-8">'
        f"<title>{html.escape(REPORT_CONFIG['subject_prefix'])}</title></head>"
        f'<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; '
        f'max-width: 800px; margin: 0 auto; padding: 20px;">'
        f'<div style="background: #667eea; padding: 30px; border-radius: 10px; color: white; margin-bottom: 30px;">'
        f'<h1 style="margin: 0;">{html.escape(REPORT_CONFIG["subject_prefix"])}</h1>'
        f'<p style="margin: 10px 0 0 0;">{html.escape(data["website"])}</p>'
        f'<p style="margin: 0;">Report date: {data["report_date"] or "--"}</p>'
        f"</div>"
        f'<div style="background: #f8f9fa; padding: 20px; border-radius: 8px; margin-bottom: 30px;">'
        f'<h2 style="margin-top: 0;">Overall scores</h2>'
        f'{card("SEO score", scores["overall_score"], "#667eea")}'
        f'{card("Speed score", scores["speed_score"], "#10b981")}'
        f'{card("Backlinks", scores["backlinks_count"], "#06b6d4")}'
        f'{card("Structure issues", scores["structure_issues_count"], "#f59e0b")}'
        f"</div>"
        f"<h2>Keyword rankings</h2>"
        f'{table(["Keyword", "Current", "Previous", "Trend"], keyword_rows)}'
        f"<h2>Competitors</h2>"
        f'{table(["Competitor", "Overall", "Speed", "Backlinks"], competitor_rows)}'
        f"<h2>Competitor keyword rankings</h2>"
        f'{table(["Competitor", "Keyword", "Current", "Trend"], competitor_keyword_rows)}'
        f"<h2>{days}-day ranking trend</h2>"
        f'{table(["Site", "Keyword", "Checks", "Change"], window_rows)}'
        f'<div style="background: #f8f9fa; padding: 20px; border-radius: 8px; text-align: center; margin-top: 40px;">'
        f'<p style="margin: 0; color: #666; font-size: 14px;">This report was generated automatically.<br>'
        f'Generated at: {data["created_at"] or "--"} (UTC)</p>'
        f"</div></body></html>"
    )


def _render_text(data: dict) -> str:
    scores = data["scores"]

    def change(row: dict) -> str:
        return format_ranking_change(row["current_ranking"], row["previous_ranking"])

    lines = [
        f"{REPORT_CONFIG['subject_prefix']} - {data['website']}",
        f"Report date: {data['report_date'] or '--'}",
        "",
        f"SEO score: {_score(scores['overall_score'])}",
        f"Speed score: {_score(scores['speed_score'])}",
        f"Backlinks: {_score(scores['backlinks_count'])}",
        f"Structure issues: {_score(scores['structure_issues_count'])}",
        "",
        "Keyword rankings:",
    ]
    lines += [
        f"  {r['keyword']}: {_rank(r['current_ranking'])} "
        f"(previous {_rank(r['previous_ranking'])}, {change(r)})"
        for r in data["keywords"]
    ] or ["  No keyword data"]
    lines += ["", "Competitors:"]
    lines += [
        f"  {r['competitor']}: overall {_score(r['overall_score'])}, "
        f"speed {_score(r['speed_score'])}, backlinks {_score(r['backlinks_count'])}"
        for r in data["competitors"]
    ] or ["  No competitor data"]
    lines += ["", "Competitor keyword rankings:"]
    lines += [
        f"  {r['competitor']} / {r['keyword']}: {_rank(r['current_ranking'])} ({change(r)})"
        for r in data["competitor_keywords"]
    ] or ["  No competitor keyword data"]
    return "\n".join(lines) + "\n"


def render_report(
    website: Website,
    report: SeoReport,
    keywords: Iterable[Keyword],
    competitors: Iterable[Competitor],
    competitor_keywords: Iterable[CompetitorKeyword],
    history: Optional[dict] = None,
    window_days: int = REPORT_CONFIG["history_window_days"],
) -> RenderedReport:
    """Render a report snapshot as an email-ready document.

    ``history`` maps :class:`EntityRef` to history points (oldest first)
    inside the trend window; missing data renders placeholder rows.
    """
    data = build_report_data(
        website, report, keywords, competitors, competitor_keywords, history, window_days,
    )
    subject = f"{REPORT_CONFIG['subject_prefix']} - {website.display_name}"
    return RenderedReport(subject=subject, html=_render_html(data), text=_render_text(data), data=data)


# ---------------------------------------------------------------------------
# Email transports
# ---------------------------------------------------------------------------

class EmailTransport(Protocol):
    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        """Deliver one message; raise DeliveryError when it is rejected."""
        ...


class SendGridTransport:
    """Deliver through the SendGrid v3 API."""

    def __init__(
        self,
        api_key: str = SENDGRID_API_KEY,
        from_email: str = REPORT_CONFIG["from_email"],
        from_name: str = REPORT_CONFIG["from_name"],
        timeout: float = EMAIL_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        if not self.api_key:
            raise DeliveryError("SENDGRID_API_KEY is not configured")

        message = Mail(
            from_email=From(self.from_email, self.from_name),
            to_emails=to,
            subject=subject,
            html_content=html,
            plain_text_content=text,
        )
        try:
            sg = SendGridAPIClient(self.api_key)
            sg.client.timeout = self.timeout
            response = sg.send(message)
        except Exception as exc:
            raise DeliveryError(
                f"SendGrid rejected the message: {exc}",
                status_code=getattr(exc, "status_code", None),
            ) from exc

        if response.status_code not in (200, 201, 202):
            raise DeliveryError(
                f"SendGrid returned status {response.status_code}",
                status_code=response.status_code,
            )


class SmtpTransport:
    """Deliver through an SMTP relay (STARTTLS on port 587 by default)."""

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        username: str = SMTP_USERNAME,
        password: str = SMTP_PASSWORD,
        use_tls: bool = SMTP_USE_TLS,
        from_email: str = REPORT_CONFIG["from_email"],
        from_name: str = REPORT_CONFIG["from_name"],
        timeout: float = EMAIL_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((self.from_name, self.from_email))
        message["To"] = to
        message.set_content(text or "Please view this report in an HTML-capable email client.")
        message.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except smtplib.SMTPResponseException as exc:
            raise DeliveryError(f"SMTP server rejected the message: {exc.smtp_error!r}", status_code=exc.smtp_code) from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(f"SMTP delivery failed: {exc}") from exc


def build_transport() -> EmailTransport:
    """SendGrid when an API key is configured, SMTP otherwise."""
    if SENDGRID_API_KEY:
        return SendGridTransport()
    return SmtpTransport()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def dispatch(
    rendered: RenderedReport,
    recipient: str,
    transport: EmailTransport,
    clock: Callable[[], datetime.datetime] = utcnow,
) -> DispatchResult:
    """Send *rendered* to *recipient* once. Raises DeliveryError on rejection."""
    recipient = (recipient or "").strip()
    if not recipient:
        raise ValidationError("A recipient email address is required")

    transport.send(recipient, rendered.subject, rendered.html, rendered.text)
    logger.info("Report email sent to {} ({})", recipient, rendered.subject)
    return DispatchResult(recipient=recipient, subject=rendered.subject, sent_at=clock())


class ReportMailer:
    """Render a website's latest report and email it to its notification address."""

    def __init__(
        self,
        store: RankingStore,
        transport: Optional[EmailTransport] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
        window_days: int = REPORT_CONFIG["history_window_days"],
    ) -> None:
        self.store = store
        self.transport = transport or build_transport()
        self.clock = clock
        self.window_days = window_days

    def render_latest(self, website_id: int) -> tuple[Website, RenderedReport]:
        if website_id in (None, ""):
            raise ValidationError("website_id is required")
        website = self.store.get_website(website_id)
        report = self.store.latest_report(website.id)
        if report is None:
            raise NotFoundError(f"No report found for website {website.id}; generate one first")

        keywords = self.store.list_keywords(website.id)
        competitors = self.store.list_competitors(website.id)
        competitor_keywords = self.store.list_competitor_keywords([c.id for c in competitors])
        start = self.clock() - datetime.timedelta(days=self.window_days)
        history = self.store.history_for_website(website.id, start)

        rendered = render_report(
            website, report, keywords, competitors, competitor_keywords,
            history=history, window_days=self.window_days,
        )
        return website, rendered

    def send_latest_report(self, website_id: int) -> DispatchResult:
        """Email the latest report. The report itself is never rolled back."""
        website, rendered = self.render_latest(website_id)
        try:
            return dispatch(rendered, website.notification_email, self.transport, self.clock)
        except DeliveryError as exc:
            logger.error("Report delivery to {} failed: {}", website.notification_email, exc.message)
            raise
