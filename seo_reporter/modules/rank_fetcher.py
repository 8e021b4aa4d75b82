"""
Rank Fetcher
============

Looks a keyword up with the external search provider (SerpApi, Google
engine, Taiwan / Traditional Chinese locale, top 100 results) and reports
the 1-based position of the first organic result on the target domain.

A ranking of *None* means the domain was not found in the scanned results;
that is an observation, not an error. Provider failures and timeouts raise
:class:`~seo_reporter.errors.UpstreamError`.

Usage:
    from seo_reporter.modules.rank_fetcher import SerpApiProvider, fetch_ranking

    observation = fetch_ranking("台北 牙醫", "https://www.example.com.tw", SerpApiProvider())
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import requests
from loguru import logger

from seo_reporter.config.settings import (
    RANKING_MODE,
    SEARCH_LOCALE,
    SEARCH_LOCALES,
    SEARCH_RESULT_LIMIT,
    SEARCH_TIMEOUT,
    SERPAPI_API_KEY,
    SERPAPI_ENDPOINT,
    SIMULATED_RANKING_RANGE,
    SIMULATION_SEED,
)
from seo_reporter.errors import UpstreamError, ValidationError
from seo_reporter.utils.helpers import is_same_domain, normalize_domain


@dataclass(frozen=True)
class RankObservation:
    """One ranking lookup: position on the results page and search volume."""

    ranking: Optional[int]
    search_volume: Optional[int] = None


# ---------------------------------------------------------------------------
# Search provider
# ---------------------------------------------------------------------------

class SearchProvider(Protocol):
    def query(
        self, keyword: str, locale: str = SEARCH_LOCALE, result_limit: int = SEARCH_RESULT_LIMIT,
    ) -> dict[str, Any]:
        """Return ``{"organic_results": [{"position", "url"}], "total_results"}``."""
        ...


class SerpApiProvider:
    """Google results through the SerpApi JSON endpoint."""

    def __init__(
        self,
        api_key: str = SERPAPI_API_KEY,
        endpoint: str = SERPAPI_ENDPOINT,
        timeout: float = SEARCH_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout

    def query(
        self, keyword: str, locale: str = SEARCH_LOCALE, result_limit: int = SEARCH_RESULT_LIMIT,
    ) -> dict[str, Any]:
        """Execute a single search request.

        Raises
        ------
        UpstreamError
            On a missing API key, network failure, timeout, non-2xx status
            (``status_code`` is set) or an unreadable body.
        """
        if not self.api_key:
            raise UpstreamError("SERPAPI_API_KEY is not configured")
        if locale not in SEARCH_LOCALES:
            raise ValidationError(f"Unsupported search locale: {locale!r}")

        params = {
            "api_key": self.api_key,
            "engine": "google",
            "q": keyword,
            "num": result_limit,
            **SEARCH_LOCALES[locale],
        }
        try:
            resp = requests.get(self.endpoint, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise UpstreamError(f"Search provider timed out after {self.timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            raise UpstreamError(f"Search provider request failed: {exc}") from exc

        if not resp.ok:
            logger.error("SerpApi error {} for '{}': {}", resp.status_code, keyword, resp.text[:500])
            raise UpstreamError(
                f"Search provider request failed: {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError("Search provider returned invalid JSON", status_code=resp.status_code) from exc
        if not isinstance(data, dict):
            raise UpstreamError("Search provider returned an unexpected payload", status_code=resp.status_code)

        organic = []
        for item in data.get("organic_results") or []:
            link = item.get("link")
            position = item.get("position")
            if link and isinstance(position, int):
                organic.append({"position": position, "url": link})

        return {
            "organic_results": organic,
            "total_results": (data.get("search_information") or {}).get("total_results"),
        }


def fetch_ranking(keyword: str, website_url: str, provider: SearchProvider) -> RankObservation:
    """Find where *website_url* ranks for *keyword*.

    Results are scanned in the order the provider returned them; the first
    one whose domain matches decides the ranking.
    """
    target = normalize_domain(website_url)
    data = provider.query(keyword, SEARCH_LOCALE, SEARCH_RESULT_LIMIT)

    ranking: Optional[int] = None
    for idx, result in enumerate(data.get("organic_results") or [], 1):
        if is_same_domain(result.get("url", ""), target):
            ranking = result.get("position") or idx
            break

    try:
        search_volume = int(data.get("total_results") or 0) or None
    except (TypeError, ValueError):
        search_volume = None

    if ranking is None:
        logger.info("'{}': {} not found in top {}", keyword, target, SEARCH_RESULT_LIMIT)
    else:
        logger.info("'{}': {} found at position {}", keyword, target, ranking)
    return RankObservation(ranking=ranking, search_volume=search_volume)


# ---------------------------------------------------------------------------
# Rank sources used by the batch updater
# ---------------------------------------------------------------------------

class RankSource(Protocol):
    def observe(self, keyword: str, website_url: str) -> RankObservation:
        ...


class LiveRankSource:
    """Rankings from the search provider."""

    def __init__(self, provider: Optional[SearchProvider] = None) -> None:
        self.provider = provider or SerpApiProvider()

    def observe(self, keyword: str, website_url: str) -> RankObservation:
        return fetch_ranking(keyword, website_url, self.provider)


class SimulatedRankSource:
    """Placeholder rankings drawn from a seedable pseudo-random source."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        ranking_range: tuple[int, int] = SIMULATED_RANKING_RANGE,
    ) -> None:
        self.rng = rng or random.Random(SIMULATION_SEED)
        self.ranking_range = ranking_range

    def observe(self, keyword: str, website_url: str) -> RankObservation:  # noqa: ARG002
        low, high = self.ranking_range
        return RankObservation(ranking=self.rng.randint(low, high))


def build_rank_source(mode: Optional[str] = None) -> RankSource:
    """Rank source for the configured ``RANKING_MODE``."""
    mode = (mode or RANKING_MODE).lower()
    if mode == "live":
        return LiveRankSource()
    if mode == "simulated":
        logger.info("Using simulated rankings (RANKING_MODE=simulated)")
        return SimulatedRankSource()
    raise ValidationError(f"Unknown ranking mode: {mode!r}")
