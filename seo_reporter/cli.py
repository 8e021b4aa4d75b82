#!/usr/bin/env python3
"""
CLI Entry Point for the SEO Rank Reporter

Usage:
    seo-reporter [command] [options]

Commands:
    init                     Create the database tables
    add-website              Register a website to track
    add-keyword              Track keywords for a website
    add-competitor           Register a competitor of a website
    set-competitor-keywords  Replace a competitor's keyword list
    settings                 Edit a website's report settings
    track                    Refresh rankings (one entity or all)
    report                   Generate or show a website's report
    send                     Email the latest report of a website
    history                  Show the ranking history of one entity
    run-scheduled            Generate (and email) all due reports

Every command prints a JSON summary and exits with status 1 on failure.
"""

import json
import sys

import click
from loguru import logger

from seo_reporter import __version__
from seo_reporter.config.settings import LOG_FILE, LOG_LEVEL
from seo_reporter.database.models import COMPETITOR_KEYWORD, KEYWORD, REPORT_FREQUENCIES
from seo_reporter.database.store import RankingStore
from seo_reporter.errors import SeoReporterError

# Configure logging
logger.add(LOG_FILE, rotation="10 MB", level=LOG_LEVEL, retention="30 days")


def _emit(result: dict) -> None:
    click.echo(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    if not result.get("success"):
        sys.exit(1)


def _store_call(fn) -> dict:
    """Run a storage operation and turn pipeline errors into a response."""
    try:
        with RankingStore() as store:
            return {"success": True, **fn(store)}
    except SeoReporterError as exc:
        return {"success": False, **exc.to_dict()}


@click.group()
@click.version_option(version=__version__, prog_name="SEO Rank Reporter")
def cli():
    """SEO keyword ranking tracker and report mailer."""
    pass


@cli.command()
def init():
    """Create the database tables."""
    from seo_reporter.database.models import init_db

    click.echo("Initializing database...")
    init_db()
    click.echo("Database initialized.")


# ---------------------------------------------------------------------------
# Websites, keywords and competitors
# ---------------------------------------------------------------------------

@cli.command("add-website")
@click.option("--url", "-u", required=True, help="Website URL")
@click.option("--user-id", required=True, help="Owning user id")
@click.option("--email", "-e", "notification_email", required=True, help="Report recipient")
@click.option("--name", "-n", default=None, help="Display name")
@click.option("--frequency", "-f", type=click.Choice(REPORT_FREQUENCIES), default="weekly",
              help="Report frequency")
def add_website(url, user_id, notification_email, name, frequency):
    """Register a website to track."""
    def add(store):
        website = store.add_website(url, user_id, notification_email, name=name, report_frequency=frequency)
        return {"website_id": website.id, "url": website.url, "report_frequency": website.report_frequency}

    _emit(_store_call(add))


@cli.command("add-keyword")
@click.option("--website", "-w", "website_id", type=int, required=True, help="Website id")
@click.argument("keywords", nargs=-1, required=True)
def add_keyword(website_id, keywords):
    """Track one or more KEYWORDS for a website."""
    def add(store):
        rows = [store.add_keyword(website_id, text) for text in keywords]
        return {"website_id": website_id, "keywords": [{"id": k.id, "keyword": k.keyword} for k in rows]}

    _emit(_store_call(add))


@cli.command("add-competitor")
@click.option("--website", "-w", "website_id", type=int, required=True, help="Website id")
@click.option("--url", "-u", required=True, help="Competitor URL")
@click.option("--name", "-n", default=None, help="Competitor name")
def add_competitor(website_id, url, name):
    """Register a competitor of a website."""
    def add(store):
        competitor = store.add_competitor(website_id, url, name=name)
        return {"competitor_id": competitor.id, "website_id": website_id, "url": competitor.url}

    _emit(_store_call(add))


@cli.command("set-competitor-keywords")
@click.option("--competitor", "-c", "competitor_id", type=int, required=True, help="Competitor id")
@click.argument("keywords", nargs=-1)
def set_competitor_keywords(competitor_id, keywords):
    """Replace a competitor's keyword list with KEYWORDS."""
    def replace(store):
        rows = store.replace_competitor_keywords(competitor_id, keywords)
        return {
            "competitor_id": competitor_id,
            "keywords": [{"id": ck.id, "keyword": ck.keyword} for ck in rows],
        }

    _emit(_store_call(replace))


@cli.command()
@click.option("--website", "-w", "website_id", type=int, required=True, help="Website id")
@click.option("--email", "-e", "notification_email", default=None, help="Report recipient")
@click.option("--frequency", "-f", type=click.Choice(REPORT_FREQUENCIES), default=None,
              help="Report frequency")
@click.option("--name", "-n", default=None, help="Display name")
@click.option("--active/--inactive", default=None, help="Enable or pause scheduled runs")
def settings(website_id, notification_email, frequency, name, active):
    """Edit a website's report settings."""
    def update(store):
        website = store.update_website_settings(
            website_id,
            notification_email=notification_email,
            report_frequency=frequency,
            name=name,
            is_active=active,
        )
        return {
            "website_id": website.id,
            "name": website.name,
            "notification_email": website.notification_email,
            "report_frequency": website.report_frequency,
            "is_active": website.is_active,
        }

    _emit(_store_call(update))


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--kind", "-k", type=click.Choice([KEYWORD, COMPETITOR_KEYWORD]), default=KEYWORD,
              help="Entity kind for a manual update")
@click.option("--id", "entity_id", type=int, default=None, help="Update this entity only")
@click.option("--website", "-w", "website_id", type=int, default=None,
              help="Update every entity of this website")
def track(kind, entity_id, website_id):
    """Refresh keyword rankings."""
    from seo_reporter.modules.triggers import handle_ranking_request

    if entity_id is not None:
        payload = {"manual": True, "kind": kind, "entity_id": entity_id}
    elif website_id is not None:
        payload = {"website_id": website_id}
    else:
        payload = {}
    _emit(handle_ranking_request(payload))


@cli.command()
@click.option("--website", "-w", "website_id", type=int, required=True, help="Website id")
@click.option("--send", is_flag=True, help="Email the report after generating it")
@click.option("--latest", is_flag=True, help="Show the latest stored report instead")
def report(website_id, send, latest):
    """Generate an SEO report for a website."""
    from seo_reporter.modules.triggers import handle_latest_report_request, handle_report_request

    if latest:
        _emit(handle_latest_report_request({"website_id": website_id}))
    else:
        _emit(handle_report_request({"website_id": website_id, "send": send}))


@cli.command()
@click.option("--website", "-w", "website_id", type=int, required=True, help="Website id")
def send(website_id):
    """Email the latest report of a website."""
    from seo_reporter.modules.triggers import handle_send_request

    _emit(handle_send_request({"website_id": website_id}))


@cli.command()
@click.option("--keyword", "-k", "entity_id", type=int, required=True, help="Keyword id")
@click.option("--kind", type=click.Choice([KEYWORD, COMPETITOR_KEYWORD]), default=KEYWORD,
              help="Entity kind")
@click.option("--days", "-d", type=int, default=30, help="History window in days")
def history(entity_id, kind, days):
    """Show the ranking history of a keyword."""
    from seo_reporter.modules.triggers import handle_history_request

    _emit(handle_history_request({"kind": kind, "entity_id": entity_id, "days": days}))


@cli.command("run-scheduled")
@click.option("--all", "run_all", is_flag=True, help="Ignore report frequency")
@click.option("--no-send", is_flag=True, help="Generate without emailing")
def run_scheduled(run_all, no_send):
    """Generate (and email) reports for all active websites that are due."""
    from seo_reporter.modules.triggers import handle_scheduled_reports

    _emit(handle_scheduled_reports({"only_due": not run_all, "send": not no_send}))


if __name__ == "__main__":
    cli()
