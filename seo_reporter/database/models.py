"""
Database models for the SEO Rank Reporter.
Uses SQLAlchemy ORM with support for SQLite (dev) and PostgreSQL (production).

Ownership is tree-shaped: a Website owns its keywords, competitors and
reports; a Competitor owns its keywords; every ranking history point
belongs to exactly one Keyword or CompetitorKeyword. Deleting an owner
cascades to everything below it.
"""

from dataclasses import dataclass

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, Date,
    DateTime, JSON, ForeignKey, Index, CheckConstraint,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.sql import func

from seo_reporter.config.settings import DATABASE_URL

engine = create_engine(
    DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Yield a session and close it once the caller is done."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


REPORT_FREQUENCIES = ("daily", "weekly", "monthly")

KEYWORD = "keyword"
COMPETITOR_KEYWORD = "competitor_keyword"
TRACKABLE_KINDS = (KEYWORD, COMPETITOR_KEYWORD)


@dataclass(frozen=True)
class EntityRef:
    """Names one tracked entity: a Keyword or a CompetitorKeyword."""

    kind: str
    id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


# ============================================================
# Tracked websites
# ============================================================

class Website(Base):
    __tablename__ = "websites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String(1000), nullable=False)
    name = Column(String(500))
    user_id = Column(String(100), nullable=False)
    notification_email = Column(String(320), nullable=False)
    report_frequency = Column(String(20), nullable=False, default="weekly")  # daily, weekly, monthly
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    keywords = relationship("Keyword", back_populates="website", cascade="all, delete-orphan")
    competitors = relationship("Competitor", back_populates="website", cascade="all, delete-orphan")
    reports = relationship("SeoReport", back_populates="website", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_website_user", "user_id"),
        Index("idx_website_active", "is_active"),
    )

    @property
    def display_name(self) -> str:
        return self.name or self.url


# ============================================================
# Trackables: keywords and competitor keywords
# ============================================================

class TrackableMixin:
    """Columns and behaviour shared by every rank-tracked entity.

    ``current_ranking`` moves to ``previous_ranking`` exactly once per
    update cycle; ``None`` means "not found in the observed results".
    """

    trackable_kind = ""
    history_column = ""

    keyword = Column(String(500), nullable=False)
    current_ranking = Column(Integer)
    previous_ranking = Column(Integer)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    @property
    def ref(self) -> EntityRef:
        return EntityRef(self.trackable_kind, self.id)

    def parent_url(self) -> str:
        """URL whose domain is looked up in the search results."""
        raise NotImplementedError


class Keyword(TrackableMixin, Base):
    __tablename__ = "keywords"

    trackable_kind = KEYWORD
    history_column = "keyword_id"

    id = Column(Integer, primary_key=True, autoincrement=True)
    website_id = Column(Integer, ForeignKey("websites.id", ondelete="CASCADE"), nullable=False)

    website = relationship("Website", back_populates="keywords")
    history = relationship(
        "RankingHistoryPoint", back_populates="keyword_ref",
        cascade="all, delete-orphan", order_by="RankingHistoryPoint.checked_at",
    )

    __table_args__ = (
        Index("idx_keyword_website", "website_id"),
    )

    def parent_url(self) -> str:
        return self.website.url


class Competitor(Base):
    __tablename__ = "competitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    website_id = Column(Integer, ForeignKey("websites.id", ondelete="CASCADE"), nullable=False)
    url = Column(String(1000), nullable=False)
    name = Column(String(500))
    overall_score = Column(Integer)
    speed_score = Column(Integer)
    backlinks_count = Column(Integer)
    last_checked_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())

    website = relationship("Website", back_populates="competitors")
    keywords = relationship("CompetitorKeyword", back_populates="competitor", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_competitor_website", "website_id"),
    )

    @property
    def display_name(self) -> str:
        return self.name or self.url


class CompetitorKeyword(TrackableMixin, Base):
    __tablename__ = "competitor_keywords"

    trackable_kind = COMPETITOR_KEYWORD
    history_column = "competitor_keyword_id"

    id = Column(Integer, primary_key=True, autoincrement=True)
    competitor_id = Column(Integer, ForeignKey("competitors.id", ondelete="CASCADE"), nullable=False)

    competitor = relationship("Competitor", back_populates="keywords")
    history = relationship(
        "RankingHistoryPoint", back_populates="competitor_keyword_ref",
        cascade="all, delete-orphan", order_by="RankingHistoryPoint.checked_at",
    )

    __table_args__ = (
        Index("idx_competitor_keyword_competitor", "competitor_id"),
    )

    def parent_url(self) -> str:
        return self.competitor.url


# ============================================================
# Ranking history (append-only)
# ============================================================

class RankingHistoryPoint(Base):
    __tablename__ = "keyword_ranking_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword_id = Column(Integer, ForeignKey("keywords.id", ondelete="CASCADE"))
    competitor_keyword_id = Column(Integer, ForeignKey("competitor_keywords.id", ondelete="CASCADE"))
    ranking = Column(Integer)  # null if not found in the observed results
    search_volume = Column(Integer)
    checked_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=func.now())

    keyword_ref = relationship("Keyword", back_populates="history")
    competitor_keyword_ref = relationship("CompetitorKeyword", back_populates="history")

    __table_args__ = (
        CheckConstraint(
            "(keyword_id IS NULL) <> (competitor_keyword_id IS NULL)",
            name="ck_history_single_owner",
        ),
        Index("idx_history_keyword_checked", "keyword_id", "checked_at"),
        Index("idx_history_competitor_keyword_checked", "competitor_keyword_id", "checked_at"),
    )


# ============================================================
# Reports
# ============================================================

class SeoReport(Base):
    __tablename__ = "seo_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    website_id = Column(Integer, ForeignKey("websites.id", ondelete="CASCADE"), nullable=False)
    report_date = Column(Date, nullable=False)
    overall_score = Column(Integer, nullable=False)  # 0-100
    speed_score = Column(Integer, nullable=False)  # 0-100
    backlinks_count = Column(Integer, nullable=False)
    structure_issues_count = Column(Integer, nullable=False)
    report_data = Column(JSON)  # counts and generation metadata
    created_at = Column(DateTime, nullable=False, default=func.now())

    website = relationship("Website", back_populates="reports")

    __table_args__ = (
        Index("idx_report_website_created", "website_id", "created_at"),
    )


def init_db(bind=None):
    """Initialize the database, creating all tables."""
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    return bind


if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    print("Database initialized successfully.")
