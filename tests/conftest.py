"""
Shared fixtures for the SEO Rank Reporter tests.

The environment is pinned before any ``seo_reporter`` import so that
settings resolve to an in-memory database, simulated rankings and no
outbound email credentials.
"""

import os
import sys
import tempfile
import datetime

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ["SEO_REPORTER_HOME"] = tempfile.mkdtemp(prefix="seo-reporter-tests-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SERPAPI_API_KEY"] = ""
os.environ["SENDGRID_API_KEY"] = ""
os.environ["RANKING_MODE"] = "simulated"
os.environ["BATCH_THROTTLE_SECONDS"] = "0"

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from seo_reporter.database.models import init_db
from seo_reporter.database.store import RankingStore
from seo_reporter.errors import DeliveryError
from seo_reporter.modules.rank_fetcher import RankObservation
from seo_reporter.modules.report_generator import CompetitorScores, WebsiteScores


# ---------------------------------------------------------------------------
# Deterministic collaborators
# ---------------------------------------------------------------------------

class StubRankSource:
    """Returns a fixed ranking per keyword; raises the configured errors."""

    def __init__(self, rankings=None, errors=None, default=10, search_volume=None):
        self.rankings = dict(rankings or {})
        self.errors = dict(errors or {})
        self.default = default
        self.search_volume = search_volume
        self.calls = []

    def observe(self, keyword, website_url):
        self.calls.append((keyword, website_url))
        if keyword in self.errors:
            raise self.errors[keyword]
        return RankObservation(
            ranking=self.rankings.get(keyword, self.default),
            search_volume=self.search_volume,
        )


class StubAnalyzer:
    def __init__(self, website=None, competitor=None):
        self.website = website or WebsiteScores(85, 90, 120, 3)
        self.competitor = competitor or CompetitorScores(75, 80, 300)

    def score_website(self, website_id):
        return self.website

    def score_competitor(self, competitor_id):
        return self.competitor


class RecordingTransport:
    """Email transport that records messages instead of sending them."""

    def __init__(self, error=None):
        self.error = error
        self.sent = []

    def send(self, to, subject, html, text=None):
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})


class StepClock:
    """Clock that advances one minute per call, starting at *start*."""

    def __init__(self, start=datetime.datetime(2024, 5, 1, 6, 0, 0)):
        self.now = start

    def __call__(self):
        current = self.now
        self.now = self.now + datetime.timedelta(minutes=1)
        return current


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db_session):
    return RankingStore(db_session)


@pytest.fixture
def bound_sessions(monkeypatch, session_factory):
    """Make stores created without a session use the test database."""
    monkeypatch.setattr("seo_reporter.database.store.SessionLocal", session_factory)
    return session_factory


@pytest.fixture
def website(store):
    return store.add_website(
        "https://www.example.com",
        "user-1",
        "owner@example.com",
        name="Example Dental",
        report_frequency="weekly",
    )


@pytest.fixture
def rank_source():
    return StubRankSource()


@pytest.fixture
def analyzer():
    return StubAnalyzer()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def failing_transport():
    return RecordingTransport(error=DeliveryError("mailbox unavailable", status_code=550))


@pytest.fixture
def clock():
    return StepClock()
