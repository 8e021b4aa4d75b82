"""
Report Aggregator
=================

Generates one SEO report snapshot per call. Report generation also
refreshes every keyword and competitor-keyword ranking of the website and
the aggregate scores of each competitor, then inserts a new ``SeoReport``
row; earlier reports are never modified, so the latest report is simply
the newest row.

Scores come from an :class:`Analyzer`. Until a real analysis engine is
plugged in, :class:`SimulatedAnalyzer` draws placeholder values inside
``SCORE_RANGES``.
"""

from __future__ import annotations

import datetime
import random
from dataclasses import asdict, dataclass
from typing import Callable, Optional, Protocol

from loguru import logger

from seo_reporter.config.settings import REPORT_FREQUENCY_DAYS, SCORE_RANGES, SIMULATION_SEED
from seo_reporter.database.models import SeoReport, Website
from seo_reporter.database.store import RankingStore
from seo_reporter.errors import NotFoundError, SeoReporterError, ValidationError
from seo_reporter.modules.ranking_updater import RankingUpdater, RankStatus
from seo_reporter.utils.helpers import utcnow


@dataclass(frozen=True)
class WebsiteScores:
    overall_score: int
    speed_score: int
    backlinks_count: int
    structure_issues_count: int


@dataclass(frozen=True)
class CompetitorScores:
    overall_score: int
    speed_score: int
    backlinks_count: int


class Analyzer(Protocol):
    def score_website(self, website_id: int) -> WebsiteScores:
        ...

    def score_competitor(self, competitor_id: int) -> CompetitorScores:
        ...


class SimulatedAnalyzer:
    """Placeholder analyzer: bounded pseudo-random draws per score field."""

    def __init__(self, rng: Optional[random.Random] = None, ranges: Optional[dict] = None) -> None:
        self.rng = rng or random.Random(SIMULATION_SEED)
        self.ranges = ranges or SCORE_RANGES

    def _draw(self, field: str) -> int:
        low, high = self.ranges[field]
        return self.rng.randint(low, high)

    def score_website(self, website_id: int) -> WebsiteScores:  # noqa: ARG002
        return WebsiteScores(
            overall_score=self._draw("overall_score"),
            speed_score=self._draw("speed_score"),
            backlinks_count=self._draw("backlinks_count"),
            structure_issues_count=self._draw("structure_issues_count"),
        )

    def score_competitor(self, competitor_id: int) -> CompetitorScores:  # noqa: ARG002
        return CompetitorScores(
            overall_score=self._draw("overall_score"),
            speed_score=self._draw("speed_score"),
            backlinks_count=self._draw("backlinks_count"),
        )


def check_scores(scores) -> None:
    """Reject analyzer output outside the report contract."""
    for field, value in asdict(scores).items():
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{field} must be an integer, got {value!r}")
        if field in ("overall_score", "speed_score") and not 0 <= value <= 100:
            raise ValidationError(f"{field} must be within 0-100, got {value}")
        if value < 0:
            raise ValidationError(f"{field} must be >= 0, got {value}")


def serialize_report(report: SeoReport) -> dict:
    return {
        "id": report.id,
        "website_id": report.website_id,
        "report_date": report.report_date.isoformat() if report.report_date else None,
        "overall_score": report.overall_score,
        "speed_score": report.speed_score,
        "backlinks_count": report.backlinks_count,
        "structure_issues_count": report.structure_issues_count,
        "report_data": report.report_data or {},
        "created_at": report.created_at.isoformat() if report.created_at else None,
    }


class ReportGenerator:
    """Refresh rankings, score a website and persist a report snapshot."""

    def __init__(
        self,
        store: RankingStore,
        updater: Optional[RankingUpdater] = None,
        analyzer: Optional[Analyzer] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self.store = store
        self.updater = updater or RankingUpdater(store)
        self.analyzer = analyzer or SimulatedAnalyzer()
        self.clock = clock

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_report(self, website_id: int) -> SeoReport:
        """Generate and persist a report for one website.

        Raises
        ------
        ValidationError
            If no website id is given.
        NotFoundError
            If the website does not exist.
        """
        if website_id in (None, ""):
            raise ValidationError("website_id is required")
        website = self.store.get_website(website_id)
        logger.info("Generating SEO report for website {} ({})", website.id, website.url)

        rank_results = self.updater.update_website(website.id)

        keywords = self.store.list_keywords(website.id)
        competitors = self.store.list_competitors(website.id)
        competitor_keywords = self.store.list_competitor_keywords([c.id for c in competitors])

        # All scores are checked before any of them is written.
        scores = self.analyzer.score_website(website.id)
        check_scores(scores)
        competitor_scores = {}
        for competitor in competitors:
            competitor_scores[competitor.id] = self.analyzer.score_competitor(competitor.id)
            check_scores(competitor_scores[competitor.id])

        for competitor_id, scored in competitor_scores.items():
            self.store.update_competitor_scores(
                competitor_id,
                scored.overall_score,
                scored.speed_score,
                scored.backlinks_count,
                checked_at=self.clock(),
            )

        generated_at = self.clock()
        report_data = {
            "keywords_count": len(keywords),
            "competitors_count": len(competitors),
            "competitor_keywords_count": len(competitor_keywords),
            "rankings_updated": sum(1 for r in rank_results if r.ok),
            "rankings_failed": sum(1 for r in rank_results if r.status is RankStatus.FAILED),
            "website_url": website.url,
            "generated_at": generated_at.isoformat(),
        }

        report = self.store.insert_report(
            website.id,
            overall_score=scores.overall_score,
            speed_score=scores.speed_score,
            backlinks_count=scores.backlinks_count,
            structure_issues_count=scores.structure_issues_count,
            report_data=report_data,
            created_at=generated_at,
        )
        logger.success(
            "SEO report {} generated for website {} (overall={}, keywords={}, competitors={})",
            report.id, website.id, report.overall_score,
            report_data["keywords_count"], report_data["competitors_count"],
        )
        return report

    def get_latest_report(self, website_id: int) -> SeoReport:
        """Newest report of a website; raises NotFoundError when none exists."""
        self.store.get_website(website_id)
        report = self.store.latest_report(website_id)
        if report is None:
            raise NotFoundError(f"No report found for website {website_id}; generate one first")
        return report

    # ------------------------------------------------------------------
    # Scheduled generation
    # ------------------------------------------------------------------

    def is_report_due(self, website: Website, now: Optional[datetime.datetime] = None) -> bool:
        """True when the website's report frequency interval has elapsed."""
        latest = self.store.latest_report(website.id)
        if latest is None:
            return True
        now = now or self.clock()
        days = REPORT_FREQUENCY_DAYS.get(website.report_frequency, REPORT_FREQUENCY_DAYS["weekly"])
        # An hour of slack keeps a daily job from drifting past its slot.
        return now - latest.created_at >= datetime.timedelta(days=days) - datetime.timedelta(hours=1)

    def generate_due_reports(
        self, now: Optional[datetime.datetime] = None, only_due: bool = True,
    ) -> list[dict]:
        """Generate reports for every active website whose report is due.

        Failures are recorded per website and never stop the run.
        """
        websites = self.store.list_active_websites()
        logger.info("Scheduled report run: {} active websites", len(websites))

        results: list[dict] = []
        for website in websites:
            if only_due and not self.is_report_due(website, now):
                logger.debug("Report for website {} not due yet ({})", website.id, website.report_frequency)
                continue
            try:
                report = self.generate_report(website.id)
                results.append({"website_id": website.id, "success": True, "report_id": report.id})
            except SeoReporterError as exc:
                logger.error("Report generation failed for website {}: {}", website.id, exc.message)
                results.append({"website_id": website.id, "success": False, **exc.to_dict()})
            except Exception as exc:
                logger.exception("Unhandled error generating report for website {}", website.id)
                results.append({"website_id": website.id, "success": False, "error": str(exc)})

        succeeded = sum(1 for r in results if r["success"])
        logger.success("Scheduled report run complete: {}/{} websites", succeeded, len(results))
        return results
