"""Tests for the rank fetcher with the search provider mocked."""

import random
from unittest.mock import MagicMock, patch

import pytest
import requests

from seo_reporter.errors import UpstreamError, ValidationError
from seo_reporter.modules.rank_fetcher import (
    LiveRankSource,
    SerpApiProvider,
    SimulatedRankSource,
    build_rank_source,
    fetch_ranking,
)


def _response(status_code=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.text = text
    resp.json.return_value = payload if payload is not None else {}
    return resp


class FakeProvider:
    def __init__(self, results, total_results=None):
        self.results = results
        self.total_results = total_results
        self.queries = []

    def query(self, keyword, locale="tw-zh", result_limit=100):
        self.queries.append((keyword, locale, result_limit))
        return {"organic_results": self.results, "total_results": self.total_results}


class TestSerpApiProvider:

    @patch("seo_reporter.modules.rank_fetcher.requests.get")
    def test_query_parameters(self, mock_get):
        mock_get.return_value = _response(payload={
            "organic_results": [
                {"position": 1, "link": "https://a.com"},
                {"position": 2, "link": "https://www.example.com/"},
            ],
            "search_information": {"total_results": 48200},
        })
        provider = SerpApiProvider(api_key="test-key", timeout=15)

        data = provider.query("台北 牙醫")

        _, kwargs = mock_get.call_args
        params = kwargs["params"]
        assert params["engine"] == "google"
        assert params["q"] == "台北 牙醫"
        assert params["num"] == 100
        assert params["location"] == "Taiwan"
        assert params["hl"] == "zh-TW"
        assert params["gl"] == "tw"
        assert kwargs["timeout"] == 15
        assert data["organic_results"] == [
            {"position": 1, "url": "https://a.com"},
            {"position": 2, "url": "https://www.example.com/"},
        ]
        assert data["total_results"] == 48200

    @patch("seo_reporter.modules.rank_fetcher.requests.get")
    def test_non_success_status_carries_code(self, mock_get):
        mock_get.return_value = _response(status_code=429, text="rate limited")
        provider = SerpApiProvider(api_key="test-key")

        with pytest.raises(UpstreamError) as exc_info:
            provider.query("dentist")
        assert exc_info.value.status_code == 429
        assert exc_info.value.code == "upstream_error"

    @patch("seo_reporter.modules.rank_fetcher.requests.get")
    def test_timeout_is_upstream_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(UpstreamError):
            SerpApiProvider(api_key="test-key").query("dentist")

    @patch("seo_reporter.modules.rank_fetcher.requests.get")
    def test_connection_error_is_upstream_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(UpstreamError):
            SerpApiProvider(api_key="test-key").query("dentist")

    @patch("seo_reporter.modules.rank_fetcher.requests.get")
    def test_invalid_json_is_upstream_error(self, mock_get):
        resp = _response()
        resp.json.side_effect = ValueError("not json")
        mock_get.return_value = resp
        with pytest.raises(UpstreamError):
            SerpApiProvider(api_key="test-key").query("dentist")

    @patch("seo_reporter.modules.rank_fetcher.requests.get")
    def test_missing_api_key(self, mock_get):
        with pytest.raises(UpstreamError):
            SerpApiProvider(api_key="").query("dentist")
        mock_get.assert_not_called()

    @patch("seo_reporter.modules.rank_fetcher.requests.get")
    def test_unknown_locale(self, mock_get):
        with pytest.raises(ValidationError):
            SerpApiProvider(api_key="test-key").query("dentist", locale="fr-fr")
        mock_get.assert_not_called()


class TestFetchRanking:

    def test_first_matching_result_wins(self):
        provider = FakeProvider([
            {"position": 1, "url": "https://other.com"},
            {"position": 2, "url": "https://directory.tw/listing"},
            {"position": 3, "url": "https://www.example.com/services"},
            {"position": 7, "url": "https://example.com/blog"},
        ], total_results="12000")

        observation = fetch_ranking("dentist", "example.com", provider)

        assert observation.ranking == 3
        assert observation.search_volume == 12000
        assert provider.queries == [("dentist", "tw-zh", 100)]

    def test_not_found_is_none_not_error(self):
        provider = FakeProvider([{"position": 1, "url": "https://other.com"}])
        observation = fetch_ranking("dentist", "https://www.example.com", provider)
        assert observation.ranking is None
        assert observation.search_volume is None

    def test_upstream_error_propagates(self):
        provider = MagicMock()
        provider.query.side_effect = UpstreamError("boom", status_code=503)
        with pytest.raises(UpstreamError):
            fetch_ranking("dentist", "example.com", provider)

    def test_live_source_uses_provider(self):
        provider = FakeProvider([{"position": 4, "url": "https://example.com"}])
        observation = LiveRankSource(provider).observe("dentist", "https://example.com")
        assert observation.ranking == 4


class TestRankSources:

    def test_simulated_source_is_seedable(self):
        first = SimulatedRankSource(rng=random.Random(42))
        second = SimulatedRankSource(rng=random.Random(42))
        a = [first.observe("kw", "example.com").ranking for _ in range(20)]
        b = [second.observe("kw", "example.com").ranking for _ in range(20)]
        assert a == b
        assert all(1 <= r <= 50 for r in a)

    def test_simulated_source_respects_range(self):
        source = SimulatedRankSource(rng=random.Random(1), ranking_range=(3, 4))
        assert {source.observe("kw", "x").ranking for _ in range(50)} <= {3, 4}

    def test_build_rank_source(self):
        assert isinstance(build_rank_source("simulated"), SimulatedRankSource)
        assert isinstance(build_rank_source("live"), LiveRankSource)
        with pytest.raises(ValidationError):
            build_rank_source("psychic")
