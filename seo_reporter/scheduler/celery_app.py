"""
Celery task scheduler for the SEO Rank Reporter.

Runs the recurring ranking refresh and the due-report run, and exposes
on-demand tasks for single reports and email sends. The pipeline itself
never retries; retry policy lives here.

Usage:
    Start the worker:
        celery -A seo_reporter.scheduler.celery_app worker \
            --loglevel=info -Q tracking,reporting

    Start the beat scheduler:
        celery -A seo_reporter.scheduler.celery_app beat \
            --loglevel=info

    Start both (development only):
        celery -A seo_reporter.scheduler.celery_app worker \
            --beat --loglevel=info -Q tracking,reporting
"""

from celery import Celery
from celery.schedules import crontab
from loguru import logger

from seo_reporter.config.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    SCHEDULE,
)
from seo_reporter.errors import DeliveryError

# ---------------------------------------------------------------------------
# Celery application
# ---------------------------------------------------------------------------

app = Celery("seo_reporter")

app.conf.update(
    # Broker & backend
    broker_url=CELERY_BROKER_URL,
    result_backend=CELERY_RESULT_BACKEND,

    # Serialization
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    # Timezone
    timezone="Asia/Taipei",
    enable_utc=True,

    task_default_retry_delay=60,
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    # Ranking refresh runs ahead of report generation
    task_queues={
        "tracking": {
            "exchange": "tracking",
            "routing_key": "tracking",
            "queue_arguments": {"x-max-priority": 5},
        },
        "reporting": {
            "exchange": "reporting",
            "routing_key": "reporting",
            "queue_arguments": {"x-max-priority": 1},
        },
    },
    task_default_queue="tracking",

    task_routes={
        "seo_reporter.scheduler.celery_app.track_rankings": {"queue": "tracking"},
        "seo_reporter.scheduler.celery_app.generate_report": {"queue": "reporting"},
        "seo_reporter.scheduler.celery_app.generate_scheduled_reports": {"queue": "reporting"},
        "seo_reporter.scheduler.celery_app.send_report": {"queue": "reporting"},
    },

    # Keep results for 24 hours
    result_expires=86400,
)

# ---------------------------------------------------------------------------
# Beat schedule
# ---------------------------------------------------------------------------

app.conf.beat_schedule = {
    # Ranking refresh for every active website -- daily, Asia/Taipei
    "track-rankings-daily": {
        "task": "seo_reporter.scheduler.celery_app.track_rankings",
        "schedule": crontab(hour=SCHEDULE["ranking_refresh_hour"], minute=0),
        "options": {"queue": "tracking", "priority": 5},
    },

    # Due reports -- daily; each website's report_frequency decides whether
    # a new report is generated on a given day
    "generate-due-reports-daily": {
        "task": "seo_reporter.scheduler.celery_app.generate_scheduled_reports",
        "schedule": crontab(hour=SCHEDULE["report_generation_hour"], minute=0),
        "options": {"queue": "reporting", "priority": 1},
    },
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _log_task_result(task_name: str, result: dict) -> None:
    if result.get("success"):
        logger.info(
            "Task '{}' completed successfully | result_keys={}",
            task_name, sorted(result.keys()),
        )
    else:
        logger.error(
            "Task '{}' finished with an error | code={} error={}",
            task_name, result.get("code"), result.get("error"),
        )


# ---------------------------------------------------------------------------
# Task definitions
# ---------------------------------------------------------------------------

@app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def track_rankings(self, website_id=None):
    """Refresh rankings of every active website, or of one website."""
    task_name = "track_rankings"
    logger.info("Starting scheduled task: {}", task_name)
    try:
        from seo_reporter.modules.triggers import handle_ranking_request
        payload = {"website_id": website_id} if website_id is not None else {}
        result = handle_ranking_request(payload)
        _log_task_result(task_name, result)
        return {"status": "success", "task": task_name, "result": result}
    except Exception as exc:
        logger.exception("Task '{}' raised an exception", task_name)
        raise self.retry(exc=exc)


@app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def generate_report(self, website_id, send=False):
    """Generate one website's report on demand."""
    task_name = "generate_report"
    logger.info("Starting task: {} (website={})", task_name, website_id)
    try:
        from seo_reporter.modules.triggers import handle_report_request
        result = handle_report_request({"website_id": website_id, "send": send})
        _log_task_result(task_name, result)
        return {"status": "success", "task": task_name, "result": result}
    except Exception as exc:
        logger.exception("Task '{}' raised an exception", task_name)
        raise self.retry(exc=exc)


@app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=120,
    retry_backoff=True,
    retry_backoff_max=900,
    retry_jitter=True,
)
def generate_scheduled_reports(self):
    """Generate and email every due report across active websites."""
    task_name = "generate_scheduled_reports"
    logger.info("Starting scheduled task: {}", task_name)
    try:
        from seo_reporter.modules.triggers import handle_scheduled_reports
        result = handle_scheduled_reports()
        _log_task_result(task_name, result)
        return {"status": "success", "task": task_name, "result": result}
    except Exception as exc:
        logger.exception("Task '{}' raised an exception", task_name)
        raise self.retry(exc=exc)


@app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    retry_backoff=True,
    retry_backoff_max=3600,
    retry_jitter=True,
)
def send_report(self, website_id):
    """Email the latest report of a website; retried on delivery failures only."""
    task_name = "send_report"
    logger.info("Starting task: {} (website={})", task_name, website_id)
    from seo_reporter.modules.triggers import handle_send_request
    result = handle_send_request({"website_id": website_id})
    _log_task_result(task_name, result)
    if not result["success"] and result.get("code") == DeliveryError.code:
        raise self.retry(exc=DeliveryError(result["error"], status_code=result.get("status_code")))
    status = "success" if result["success"] else "failure"
    return {"status": status, "task": task_name, "result": result}


# ---------------------------------------------------------------------------
# Main -- convenience launcher for development
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    print(
        "=" * 68 + "\n"
        "  SEO Rank Reporter -- Celery Task Scheduler\n"
        "=" * 68 + "\n"
        "\n"
        "Start the Celery WORKER:\n"
        "\n"
        "    celery -A seo_reporter.scheduler.celery_app worker \\\n"
        "        --loglevel=info -Q tracking,reporting\n"
        "\n"
        "Start the Celery BEAT scheduler:\n"
        "\n"
        "    celery -A seo_reporter.scheduler.celery_app beat --loglevel=info\n"
        "\n"
        "Registered beat schedule:\n"
    )

    for name, entry in sorted(app.conf.beat_schedule.items()):
        schedule = entry["schedule"]
        timing = f"crontab(hour={schedule.hour}, minute={schedule.minute})"
        queue = entry.get("options", {}).get("queue", "default")
        print(f"  {name:<32s} | {timing:<40s} | queue={queue}")

    print()
