"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from costguard.core.config import settings
from costguard.core.logging import configure_logging

configure_logging(settings)

celery_app = Celery(
    "costguard",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["costguard.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=900,
    task_soft_time_limit=840,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=50,
    beat_schedule_filename="/tmp/costguard-celerybeat-schedule",
)

# Snooze expiry and scheduled execution are resolved by the drift tick
celery_app.conf.beat_schedule = {
    "drift-tick": {
        "task": "costguard.workers.tasks.run_drift_tick_task",
        "schedule": crontab(minute=f"*/{settings.DRIFT_TICK_INTERVAL_MINUTES}"),
    },
    "generate-recommendations": {
        "task": "costguard.workers.tasks.generate_recommendations",
        "schedule": crontab(minute=0),  # Every hour at minute 0
    },
}


@setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    """Keep Celery from replacing the structlog setup with its own handlers."""
    configure_logging(settings)


if __name__ == "__main__":
    celery_app.start()
