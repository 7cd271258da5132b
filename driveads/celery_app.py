from celery import Celery
from celery.schedules import crontab

from .config import config

app = Celery(
    "driveads",
    broker=config.celery_broker_url,
    backend=config.celery_result_backend,
    include=["driveads.jobs.tasks"],
)

app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # at-least-once: a job is acknowledged only after it ran
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_always_eager=config.celery_task_always_eager,
)

app.conf.beat_schedule = {
    "schedule-daily-metrics": {
        "task": "driveads.jobs.schedule_daily_metrics",
        "schedule": crontab(hour=config.metrics_cron_hour, minute=0),
    },
    "schedule-inactivity-checks": {
        "task": "driveads.jobs.schedule_inactivity_checks",
        "schedule": crontab(minute=0),
    },
    "schedule-lifecycle-scan": {
        "task": "driveads.jobs.schedule_lifecycle_scan",
        "schedule": crontab(hour=config.lifecycle_cron_hour, minute=0),
    },
    "schedule-random-proofs": {
        "task": "driveads.jobs.schedule_random_proofs",
        "schedule": crontab(hour=config.random_proof_cron_hour, minute=0),
    },
}
