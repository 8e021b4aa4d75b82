"""Tests for the storage adapter."""

import datetime
from unittest.mock import MagicMock

import pytest

from seo_reporter.database.models import (
    COMPETITOR_KEYWORD,
    KEYWORD,
    EntityRef,
    Keyword,
    RankingHistoryPoint,
    get_db,
)
from seo_reporter.errors import NotFoundError, ValidationError

T0 = datetime.datetime(2024, 5, 1, 6, 0, 0, 123456)


class TestWebsites:

    def test_add_website(self, store, website):
        assert website.id is not None
        assert website.is_active is True
        assert website.display_name == "Example Dental"
        assert store.get_website(website.id).url == "https://www.example.com"

    def test_display_name_falls_back_to_url(self, store):
        site = store.add_website("https://shop.tw", "user-2", "a@shop.tw")
        assert site.display_name == "https://shop.tw"

    @pytest.mark.parametrize("kwargs", [
        {"url": "", "user_id": "u", "notification_email": "a@b.co"},
        {"url": "https://x.com", "user_id": "", "notification_email": "a@b.co"},
        {"url": "https://x.com", "user_id": "u", "notification_email": "not-an-email"},
        {"url": "https://x.com", "user_id": "u", "notification_email": "a@b.co", "report_frequency": "hourly"},
    ])
    def test_add_website_validation(self, store, kwargs):
        with pytest.raises(ValidationError):
            store.add_website(**kwargs)

    def test_get_missing_website(self, store):
        with pytest.raises(NotFoundError):
            store.get_website(999)

    def test_get_website_without_id(self, store):
        with pytest.raises(ValidationError):
            store.get_website(None)

    def test_update_settings(self, store, website):
        updated = store.update_website_settings(
            website.id, notification_email="new@example.com", report_frequency="Daily",
        )
        assert updated.notification_email == "new@example.com"
        assert updated.report_frequency == "daily"

    def test_update_settings_rejects_bad_frequency(self, store, website):
        with pytest.raises(ValidationError):
            store.update_website_settings(website.id, report_frequency="yearly")
        assert store.get_website(website.id).report_frequency == "weekly"

    def test_delete_website_cascades(self, store, website, db_session):
        keyword = store.add_keyword(website.id, "dentist taipei")
        store.record_ranking(keyword.ref, 5, checked_at=T0)
        store.delete_website(website.id)

        assert db_session.query(Keyword).count() == 0
        assert db_session.query(RankingHistoryPoint).count() == 0


class TestTrackables:

    def test_keywords_and_competitor_keywords_share_the_capability(self, store, website):
        keyword = store.add_keyword(website.id, "dentist")
        competitor = store.add_competitor(website.id, "https://rival.tw", name="Rival")
        ck = store.add_competitor_keyword(competitor.id, "dentist")

        assert keyword.ref == EntityRef(KEYWORD, keyword.id)
        assert ck.ref == EntityRef(COMPETITOR_KEYWORD, ck.id)
        assert keyword.parent_url() == "https://www.example.com"
        assert ck.parent_url() == "https://rival.tw"
        assert store.get_trackable(ck.ref) is ck
        assert [e.ref for e in store.list_trackables_for_website(website.id)] == [keyword.ref, ck.ref]

    def test_delete_keyword_and_competitor(self, store, website):
        keyword = store.add_keyword(website.id, "dentist")
        competitor = store.add_competitor(website.id, "https://rival.tw")
        store.add_competitor_keyword(competitor.id, "implant")

        keyword_id, competitor_id = keyword.id, competitor.id

        store.delete_keyword(keyword_id)
        store.delete_competitor(competitor_id)

        assert store.list_trackables_for_website(website.id) == []
        with pytest.raises(NotFoundError):
            store.get_keyword(keyword_id)

    def test_unknown_kind(self, store):
        with pytest.raises(ValidationError):
            store.get_trackable(EntityRef("backlink", 1))

    def test_missing_trackable(self, store):
        with pytest.raises(NotFoundError):
            store.get_trackable(EntityRef(KEYWORD, 404))

    def test_add_keyword_requires_text(self, store, website):
        with pytest.raises(ValidationError):
            store.add_keyword(website.id, "   ")

    def test_add_keyword_to_missing_website(self, store):
        with pytest.raises(NotFoundError):
            store.add_keyword(42, "dentist")

    def test_active_trackables_skip_inactive_websites(self, store, website):
        kept = store.add_keyword(website.id, "dentist")
        paused = store.add_website("https://paused.tw", "u", "p@paused.tw")
        store.add_keyword(paused.id, "ignored")
        store.update_website_settings(paused.id, is_active=False)

        assert [e.ref for e in store.list_active_trackables()] == [kept.ref]

    def test_replace_competitor_keywords(self, store, website):
        competitor = store.add_competitor(website.id, "https://rival.tw")
        kept = store.add_competitor_keyword(competitor.id, "implant")
        store.add_competitor_keyword(competitor.id, "braces")
        store.record_ranking(kept.ref, 9, checked_at=T0)

        rows = store.replace_competitor_keywords(competitor.id, ["implant", "whitening", "", "whitening"])

        assert [r.keyword for r in rows] == ["implant", "whitening"]
        assert rows[0].id == kept.id
        assert rows[0].current_ranking == 9

    def test_update_competitor_scores(self, store, website):
        competitor = store.add_competitor(website.id, "https://rival.tw")
        store.update_competitor_scores(competitor.id, 77, 81, 240, checked_at=T0)
        refreshed = store.get_competitor(competitor.id)
        assert (refreshed.overall_score, refreshed.speed_score, refreshed.backlinks_count) == (77, 81, 240)
        assert refreshed.last_checked_at == T0


class TestRankingHistory:

    def test_record_ranking_shifts_pointers(self, store, website):
        keyword = store.add_keyword(website.id, "dentist")
        store.record_ranking(keyword.ref, 15, checked_at=T0)
        store.record_ranking(keyword.ref, 8, checked_at=T0 + datetime.timedelta(days=1))

        assert keyword.previous_ranking == 15
        assert keyword.current_ranking == 8
        assert keyword.updated_at == T0 + datetime.timedelta(days=1)

    def test_history_round_trip(self, store, website):
        keyword = store.add_keyword(website.id, "dentist")
        store.record_ranking(keyword.ref, 12, checked_at=T0, search_volume=5400)

        points = store.ranking_history(
            keyword.ref,
            start=T0 - datetime.timedelta(days=1),
            end=T0 + datetime.timedelta(days=1),
        )
        assert len(points) == 1
        assert points[0].ranking == 12
        assert points[0].checked_at == T0
        assert points[0].search_volume == 5400

    def test_history_window_excludes_older_points(self, store, website):
        keyword = store.add_keyword(website.id, "dentist")
        store.record_ranking(keyword.ref, 20, checked_at=T0 - datetime.timedelta(days=40))
        store.record_ranking(keyword.ref, 11, checked_at=T0)

        points = store.ranking_history(keyword.ref, start=T0 - datetime.timedelta(days=30))
        assert [p.ranking for p in points] == [11]

    def test_history_is_strictly_increasing(self, store, website):
        keyword = store.add_keyword(website.id, "dentist")
        first = store.record_ranking(keyword.ref, 5, checked_at=T0)
        second = store.record_ranking(keyword.ref, 6, checked_at=T0)
        third = store.record_ranking(keyword.ref, 7, checked_at=T0 - datetime.timedelta(hours=1))

        assert first.checked_at < second.checked_at < third.checked_at
        assert [p.ranking for p in store.ranking_history(keyword.ref)] == [5, 6, 7]

    def test_unranked_observation_is_stored(self, store, website):
        keyword = store.add_keyword(website.id, "dentist")
        store.record_ranking(keyword.ref, 30, checked_at=T0)
        store.record_ranking(keyword.ref, None, checked_at=T0 + datetime.timedelta(days=1))

        assert keyword.previous_ranking == 30
        assert keyword.current_ranking is None
        assert store.ranking_history(keyword.ref)[-1].ranking is None

    def test_ranking_must_be_positive(self, store, website):
        keyword = store.add_keyword(website.id, "dentist")
        with pytest.raises(ValidationError):
            store.record_ranking(keyword.ref, 0)
        assert store.ranking_history(keyword.ref) == []

    def test_history_for_website_groups_by_entity(self, store, website):
        keyword = store.add_keyword(website.id, "dentist")
        competitor = store.add_competitor(website.id, "https://rival.tw")
        ck = store.add_competitor_keyword(competitor.id, "dentist")
        other = store.add_website("https://other.tw", "u", "o@other.tw")
        foreign = store.add_keyword(other.id, "dentist")

        store.record_ranking(keyword.ref, 4, checked_at=T0)
        store.record_ranking(keyword.ref, 3, checked_at=T0 + datetime.timedelta(days=1))
        store.record_ranking(ck.ref, 9, checked_at=T0)
        store.record_ranking(foreign.ref, 1, checked_at=T0)

        grouped = store.history_for_website(website.id, start=T0 - datetime.timedelta(days=1))
        assert set(grouped) == {keyword.ref, ck.ref}
        assert [p.ranking for p in grouped[keyword.ref]] == [4, 3]
        assert [p.ranking for p in grouped[ck.ref]] == [9]

    def test_history_for_website_without_trackables(self, store, website):
        assert store.history_for_website(website.id, start=T0) == {}


class TestReports:

    def _insert(self, store, website_id, created_at, overall=80):
        return store.insert_report(
            website_id, overall, 85, 100, 2, {"keywords_count": 0}, created_at=created_at,
        )

    def test_latest_report_is_newest_created_at(self, store, website):
        older = self._insert(store, website.id, T0)
        newer = self._insert(store, website.id, T0 + datetime.timedelta(days=7), overall=90)

        latest = store.latest_report(website.id)
        assert latest.id == newer.id
        assert latest.id != older.id
        assert latest.report_date == (T0 + datetime.timedelta(days=7)).date()
        assert [r.id for r in store.list_reports(website.id)] == [newer.id, older.id]

    def test_latest_report_none(self, store, website):
        assert store.latest_report(website.id) is None


class TestSessionProvider:

    def test_get_db_yields_session_and_closes_it(self, monkeypatch):
        session = MagicMock()
        monkeypatch.setattr("seo_reporter.database.models.SessionLocal", lambda: session)

        sessions = get_db()
        assert next(sessions) is session
        session.close.assert_not_called()

        sessions.close()
        session.close.assert_called_once()
