"""
Batch Ranking Updater
=====================

Refreshes the ranking of tracked keywords and competitor keywords. Every
entity goes ``PENDING -> FETCHING -> UPDATED | FAILED``; there are no
retries inside a run. A batch records each entity's failure in its result
list and carries on with the next entity, while a single manual update
raises the error to the caller.

Entities are processed sequentially. A ``threading.Event`` passed as
``cancel_event`` stops a batch between two entities; entities already
written stay written.
"""

from __future__ import annotations

import datetime
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from loguru import logger

from seo_reporter.config.settings import BATCH_CONFIG
from seo_reporter.database.models import EntityRef
from seo_reporter.database.store import RankingStore
from seo_reporter.errors import SeoReporterError
from seo_reporter.modules.rank_fetcher import RankSource, build_rank_source
from seo_reporter.utils.helpers import utcnow


class RankStatus(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class RankResult:
    """Outcome of one entity's ranking update."""

    ref: EntityRef
    keyword: str = ""
    status: RankStatus = RankStatus.PENDING
    previous_ranking: Optional[int] = None
    ranking: Optional[int] = None
    search_volume: Optional[int] = None
    checked_at: Optional[datetime.datetime] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is RankStatus.UPDATED

    def to_dict(self) -> dict:
        return {
            "kind": self.ref.kind,
            "entity_id": self.ref.id,
            "keyword": self.keyword,
            "status": self.status.value,
            "previous_ranking": self.previous_ranking,
            "ranking": self.ranking,
            "search_volume": self.search_volume,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
            "error": self.error,
            "error_code": self.error_code,
        }


class RankingUpdater:
    """Fetch new rankings and persist them through :class:`RankingStore`.

    Parameters
    ----------
    store : RankingStore
        Storage adapter; ``record_ranking`` performs the pointer shift and
        history append together.
    rank_source : RankSource, optional
        Live provider or simulated source. Defaults to the configured mode.
    clock : callable, optional
        Returns the naive-UTC ``checked_at`` timestamp.
    throttle_seconds : float, optional
        Pause between two entities of a batch.
    """

    def __init__(
        self,
        store: RankingStore,
        rank_source: Optional[RankSource] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
        throttle_seconds: float = BATCH_CONFIG["throttle_seconds"],
    ) -> None:
        self.store = store
        self.rank_source = rank_source or build_rank_source()
        self.clock = clock
        self.throttle_seconds = throttle_seconds

    # ------------------------------------------------------------------
    # Single entity
    # ------------------------------------------------------------------

    def update_entity(self, ref: EntityRef) -> RankResult:
        """Update one entity, raising on any failure."""
        entity = self.store.get_trackable(ref)
        result = RankResult(ref=ref, keyword=entity.keyword)
        return self._update(entity, result)

    def _update(self, entity, result: RankResult) -> RankResult:
        result.previous_ranking = entity.current_ranking
        result.status = RankStatus.FETCHING

        observation = self.rank_source.observe(entity.keyword, entity.parent_url())
        point = self.store.record_ranking(
            entity.ref,
            observation.ranking,
            checked_at=self.clock(),
            search_volume=observation.search_volume,
        )

        result.ranking = observation.ranking
        result.search_volume = observation.search_volume
        result.checked_at = point.checked_at
        result.status = RankStatus.UPDATED
        return result

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def update_entities(
        self,
        refs: Iterable[EntityRef],
        cancel_event: Optional[threading.Event] = None,
    ) -> list[RankResult]:
        """Update every entity in *refs*, collecting failures per entity.

        The returned list has one entry per ref; entities skipped because
        of cancellation stay ``PENDING``.
        """
        refs = list(refs)
        total = len(refs)
        results: list[RankResult] = []

        for idx, ref in enumerate(refs, 1):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Ranking batch cancelled after {}/{} entities", idx - 1, total)
                results.extend(RankResult(ref=r) for r in refs[idx - 1:])
                break

            result = RankResult(ref=ref)
            try:
                entity = self.store.get_trackable(ref)
                result.keyword = entity.keyword
                logger.debug("[{}/{}] Updating ranking: {} ({})", idx, total, entity.keyword, ref)
                self._update(entity, result)
            except SeoReporterError as exc:
                result.status = RankStatus.FAILED
                result.error = exc.message
                result.error_code = exc.code
                logger.warning("Ranking update failed for {}: {}", ref, exc.message)
            except Exception as exc:
                result.status = RankStatus.FAILED
                result.error = str(exc) or exc.__class__.__name__
                result.error_code = "internal_error"
                logger.exception("Unhandled error updating ranking for {}", ref)
            results.append(result)

            if self.throttle_seconds and idx < total:
                time.sleep(self.throttle_seconds)

        updated = sum(1 for r in results if r.ok)
        failed = sum(1 for r in results if r.status is RankStatus.FAILED)
        logger.success("Ranking batch complete: updated={}, failed={}, total={}", updated, failed, total)
        return results

    def update_website(
        self, website_id: int, cancel_event: Optional[threading.Event] = None,
    ) -> list[RankResult]:
        """Update every keyword and competitor keyword of one website."""
        self.store.get_website(website_id)
        refs = [e.ref for e in self.store.list_trackables_for_website(website_id)]
        logger.info("Updating {} rankings for website {}", len(refs), website_id)
        return self.update_entities(refs, cancel_event)

    def update_all_active(self, cancel_event: Optional[threading.Event] = None) -> list[RankResult]:
        """Update every tracked entity of every active website."""
        refs = [e.ref for e in self.store.list_active_trackables()]
        logger.info("Starting ranking run for {} tracked entities ...", len(refs))
        return self.update_entities(refs, cancel_event)


def summarize_results(results: Iterable[RankResult]) -> dict:
    """Machine-readable batch summary."""
    results = list(results)
    return {
        "total": len(results),
        "updated": sum(1 for r in results if r.ok),
        "failed": sum(1 for r in results if r.status is RankStatus.FAILED),
        "pending": sum(1 for r in results if r.status is RankStatus.PENDING),
        "results": [r.to_dict() for r in results],
    }
