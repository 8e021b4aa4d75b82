"""
Storage adapter for websites, tracked keywords, ranking history and reports.

All reads are scoped by id or by owning website / competitor. Writes are
single-row operations committed immediately; ``record_ranking`` is the one
place where two rows change together and it commits both in a single
transaction.
"""

from __future__ import annotations

import datetime
import re
from typing import Iterable, Optional

from loguru import logger
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from seo_reporter.database.models import (
    COMPETITOR_KEYWORD,
    KEYWORD,
    REPORT_FREQUENCIES,
    Competitor,
    CompetitorKeyword,
    EntityRef,
    Keyword,
    RankingHistoryPoint,
    SeoReport,
    SessionLocal,
    Website,
)
from seo_reporter.errors import NotFoundError, ValidationError
from seo_reporter.utils.helpers import utcnow

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_TRACKABLE_MODELS = {
    KEYWORD: Keyword,
    COMPETITOR_KEYWORD: CompetitorKeyword,
}


def _require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required")
    return text


def _validate_email(value: Optional[str]) -> str:
    email = _require_text(value, "notification_email")
    if not _EMAIL_RE.match(email):
        raise ValidationError(f"Invalid notification email: {email!r}")
    return email


def _validate_frequency(value: Optional[str]) -> str:
    frequency = (value or "").strip().lower()
    if frequency not in REPORT_FREQUENCIES:
        raise ValidationError(
            f"report_frequency must be one of {', '.join(REPORT_FREQUENCIES)}"
        )
    return frequency


class RankingStore:
    """CRUD and time-series access for the ranking pipeline.

    Parameters
    ----------
    session : sqlalchemy.orm.Session, optional
        An existing database session. If *None*, a new session is created
        and closed by :meth:`close`.
    """

    def __init__(self, session: Optional[Session] = None) -> None:
        self._owns_session = session is None
        self.session: Session = session or SessionLocal()

    def __enter__(self) -> "RankingStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Database commit failed; transaction rolled back")
            raise

    def _get(self, model, entity_id: int, label: str):
        if entity_id is None:
            raise ValidationError(f"{label} id is required")
        obj = self.session.get(model, entity_id)
        if obj is None:
            raise NotFoundError(f"{label} {entity_id} not found")
        return obj

    # ------------------------------------------------------------------
    # Websites
    # ------------------------------------------------------------------

    def get_website(self, website_id: int) -> Website:
        return self._get(Website, website_id, "Website")

    def list_active_websites(self) -> list[Website]:
        return (
            self.session.query(Website)
            .filter(Website.is_active.is_(True))
            .order_by(Website.id)
            .all()
        )

    def add_website(
        self,
        url: str,
        user_id: str,
        notification_email: str,
        name: Optional[str] = None,
        report_frequency: str = "weekly",
    ) -> Website:
        website = Website(
            url=_require_text(url, "url"),
            user_id=_require_text(user_id, "user_id"),
            notification_email=_validate_email(notification_email),
            name=(name or "").strip() or None,
            report_frequency=_validate_frequency(report_frequency),
            is_active=True,
        )
        self.session.add(website)
        self._commit()
        logger.info("Registered website {} ({})", website.id, website.url)
        return website

    def update_website_settings(
        self,
        website_id: int,
        notification_email: Optional[str] = None,
        report_frequency: Optional[str] = None,
        name: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Website:
        website = self.get_website(website_id)
        if notification_email is not None:
            website.notification_email = _validate_email(notification_email)
        if report_frequency is not None:
            website.report_frequency = _validate_frequency(report_frequency)
        if name is not None:
            website.name = name.strip() or None
        if is_active is not None:
            website.is_active = is_active
        self._commit()
        return website

    def delete_website(self, website_id: int) -> None:
        self.session.delete(self.get_website(website_id))
        self._commit()
        logger.info("Deleted website {} and its dependents", website_id)

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    def get_keyword(self, keyword_id: int) -> Keyword:
        return self._get(Keyword, keyword_id, "Keyword")

    def list_keywords(self, website_id: int) -> list[Keyword]:
        return (
            self.session.query(Keyword)
            .filter(Keyword.website_id == website_id)
            .order_by(Keyword.id)
            .all()
        )

    def add_keyword(self, website_id: int, keyword: str) -> Keyword:
        self.get_website(website_id)
        row = Keyword(website_id=website_id, keyword=_require_text(keyword, "keyword"))
        self.session.add(row)
        self._commit()
        return row

    def delete_keyword(self, keyword_id: int) -> None:
        self.session.delete(self.get_keyword(keyword_id))
        self._commit()

    # ------------------------------------------------------------------
    # Competitors
    # ------------------------------------------------------------------

    def get_competitor(self, competitor_id: int) -> Competitor:
        return self._get(Competitor, competitor_id, "Competitor")

    def list_competitors(self, website_id: int) -> list[Competitor]:
        return (
            self.session.query(Competitor)
            .filter(Competitor.website_id == website_id)
            .order_by(Competitor.id)
            .all()
        )

    def add_competitor(self, website_id: int, url: str, name: Optional[str] = None) -> Competitor:
        self.get_website(website_id)
        competitor = Competitor(
            website_id=website_id,
            url=_require_text(url, "competitor url"),
            name=(name or "").strip() or None,
        )
        self.session.add(competitor)
        self._commit()
        return competitor

    def delete_competitor(self, competitor_id: int) -> None:
        self.session.delete(self.get_competitor(competitor_id))
        self._commit()

    def update_competitor_scores(
        self,
        competitor_id: int,
        overall_score: int,
        speed_score: int,
        backlinks_count: int,
        checked_at: Optional[datetime.datetime] = None,
    ) -> Competitor:
        competitor = self.get_competitor(competitor_id)
        competitor.overall_score = overall_score
        competitor.speed_score = speed_score
        competitor.backlinks_count = backlinks_count
        competitor.last_checked_at = checked_at or utcnow()
        self._commit()
        return competitor

    # ------------------------------------------------------------------
    # Competitor keywords
    # ------------------------------------------------------------------

    def get_competitor_keyword(self, competitor_keyword_id: int) -> CompetitorKeyword:
        return self._get(CompetitorKeyword, competitor_keyword_id, "Competitor keyword")

    def list_competitor_keywords(self, competitor_ids: Iterable[int]) -> list[CompetitorKeyword]:
        ids = list(competitor_ids)
        if not ids:
            return []
        return (
            self.session.query(CompetitorKeyword)
            .filter(CompetitorKeyword.competitor_id.in_(ids))
            .order_by(CompetitorKeyword.competitor_id, CompetitorKeyword.id)
            .all()
        )

    def add_competitor_keyword(self, competitor_id: int, keyword: str) -> CompetitorKeyword:
        self.get_competitor(competitor_id)
        row = CompetitorKeyword(
            competitor_id=competitor_id, keyword=_require_text(keyword, "keyword"),
        )
        self.session.add(row)
        self._commit()
        return row

    def replace_competitor_keywords(
        self, competitor_id: int, keywords: Iterable[str]
    ) -> list[CompetitorKeyword]:
        """Replace a competitor's keyword list.

        Keywords that are kept retain their rankings and history; dropped
        keywords are deleted together with their history.
        """
        competitor = self.get_competitor(competitor_id)
        wanted: list[str] = []
        for text in keywords:
            text = (text or "").strip()
            if text and text not in wanted:
                wanted.append(text)

        existing = {ck.keyword: ck for ck in competitor.keywords}
        for text, ck in existing.items():
            if text not in wanted:
                self.session.delete(ck)
        for text in wanted:
            if text not in existing:
                self.session.add(CompetitorKeyword(competitor_id=competitor_id, keyword=text))
        self._commit()
        return self.list_competitor_keywords([competitor_id])

    # ------------------------------------------------------------------
    # Trackables
    # ------------------------------------------------------------------

    def get_trackable(self, ref: EntityRef):
        model = _TRACKABLE_MODELS.get(ref.kind)
        if model is None:
            raise ValidationError(f"Unknown tracked entity kind: {ref.kind!r}")
        return self._get(model, ref.id, ref.kind.replace("_", " ").capitalize())

    def list_trackables_for_website(self, website_id: int) -> list:
        keywords = self.list_keywords(website_id)
        competitor_ids = [c.id for c in self.list_competitors(website_id)]
        return keywords + self.list_competitor_keywords(competitor_ids)

    def list_active_trackables(self) -> list:
        keywords = (
            self.session.query(Keyword)
            .join(Website, Keyword.website_id == Website.id)
            .filter(Website.is_active.is_(True))
            .order_by(Keyword.id)
            .all()
        )
        competitor_keywords = (
            self.session.query(CompetitorKeyword)
            .join(Competitor, CompetitorKeyword.competitor_id == Competitor.id)
            .join(Website, Competitor.website_id == Website.id)
            .filter(Website.is_active.is_(True))
            .order_by(CompetitorKeyword.id)
            .all()
        )
        return keywords + competitor_keywords

    # ------------------------------------------------------------------
    # Ranking history
    # ------------------------------------------------------------------

    def record_ranking(
        self,
        ref: EntityRef,
        new_ranking: Optional[int],
        checked_at: Optional[datetime.datetime] = None,
        search_volume: Optional[int] = None,
    ) -> RankingHistoryPoint:
        """Shift current -> previous, store *new_ranking* and append history.

        Both writes are committed together. ``checked_at`` is nudged forward
        by a microsecond when needed so that an entity's history stays
        strictly increasing.
        """
        if new_ranking is not None and new_ranking < 1:
            raise ValidationError(f"Ranking must be >= 1, got {new_ranking}")

        entity = self.get_trackable(ref)
        owner_column = getattr(RankingHistoryPoint, entity.history_column)
        checked_at = checked_at or utcnow()

        last_checked = (
            self.session.query(func.max(RankingHistoryPoint.checked_at))
            .filter(owner_column == entity.id)
            .scalar()
        )
        if last_checked is not None and checked_at <= last_checked:
            checked_at = last_checked + datetime.timedelta(microseconds=1)

        point = RankingHistoryPoint(
            ranking=new_ranking,
            search_volume=search_volume,
            checked_at=checked_at,
            **{entity.history_column: entity.id},
        )
        entity.previous_ranking = entity.current_ranking
        entity.current_ranking = new_ranking
        entity.updated_at = checked_at
        self.session.add(point)
        self._commit()

        logger.debug(
            "Recorded {} ranking {} -> {} at {}",
            ref, entity.previous_ranking, new_ranking, checked_at,
        )
        return point

    def ranking_history(
        self,
        ref: EntityRef,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
    ) -> list[RankingHistoryPoint]:
        entity = self.get_trackable(ref)
        query = self.session.query(RankingHistoryPoint).filter(
            getattr(RankingHistoryPoint, entity.history_column) == entity.id
        )
        if start is not None:
            query = query.filter(RankingHistoryPoint.checked_at >= start)
        if end is not None:
            query = query.filter(RankingHistoryPoint.checked_at <= end)
        return query.order_by(RankingHistoryPoint.checked_at.asc()).all()

    def history_for_website(
        self,
        website_id: int,
        start: datetime.datetime,
        end: Optional[datetime.datetime] = None,
    ) -> dict[EntityRef, list[RankingHistoryPoint]]:
        """History of every keyword and competitor keyword of a website."""
        keyword_ids = [k.id for k in self.list_keywords(website_id)]
        competitor_ids = [c.id for c in self.list_competitors(website_id)]
        ck_ids = [ck.id for ck in self.list_competitor_keywords(competitor_ids)]
        if not keyword_ids and not ck_ids:
            return {}

        query = self.session.query(RankingHistoryPoint).filter(
            or_(
                RankingHistoryPoint.keyword_id.in_(keyword_ids),
                RankingHistoryPoint.competitor_keyword_id.in_(ck_ids),
            ),
            RankingHistoryPoint.checked_at >= start,
        )
        if end is not None:
            query = query.filter(RankingHistoryPoint.checked_at <= end)

        grouped: dict[EntityRef, list[RankingHistoryPoint]] = {}
        for point in query.order_by(RankingHistoryPoint.checked_at.asc()).all():
            if point.keyword_id is not None:
                ref = EntityRef(KEYWORD, point.keyword_id)
            else:
                ref = EntityRef(COMPETITOR_KEYWORD, point.competitor_keyword_id)
            grouped.setdefault(ref, []).append(point)
        return grouped

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def insert_report(
        self,
        website_id: int,
        overall_score: int,
        speed_score: int,
        backlinks_count: int,
        structure_issues_count: int,
        report_data: dict,
        created_at: Optional[datetime.datetime] = None,
    ) -> SeoReport:
        created_at = created_at or utcnow()
        report = SeoReport(
            website_id=website_id,
            report_date=created_at.date(),
            overall_score=overall_score,
            speed_score=speed_score,
            backlinks_count=backlinks_count,
            structure_issues_count=structure_issues_count,
            report_data=report_data,
            created_at=created_at,
        )
        self.session.add(report)
        self._commit()
        return report

    def latest_report(self, website_id: int) -> Optional[SeoReport]:
        return (
            self.session.query(SeoReport)
            .filter(SeoReport.website_id == website_id)
            .order_by(SeoReport.created_at.desc(), SeoReport.id.desc())
            .first()
        )

    def list_reports(self, website_id: int, limit: int = 10) -> list[SeoReport]:
        return (
            self.session.query(SeoReport)
            .filter(SeoReport.website_id == website_id)
            .order_by(SeoReport.created_at.desc(), SeoReport.id.desc())
            .limit(limit)
            .all()
        )
