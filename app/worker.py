"""Celery worker configuration and beat schedule.

Start a worker with beat:
    celery -A app.worker worker --beat --loglevel=info
"""

from datetime import timedelta

from celery import Celery

from app.config import settings

# Create Celery app
celery_app = Celery(
    "rental_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Kolkata",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes max
    task_soft_time_limit=240,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=3600,

    # Beat schedule for periodic tasks
    beat_schedule={
        "expire-stale-bookings": {
            "task": "app.tasks.expire_stale_bookings",
            "schedule": timedelta(minutes=settings.booking_sweep_interval_minutes),
        },
    },
)


if __name__ == "__main__":
    celery_app.start()
