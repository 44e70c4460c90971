"""
Celery application for out-of-band order work.

Payment requests only enqueue; tasks open their own database sessions.
"""

from celery import Celery

from app.config import settings

EMAIL_QUEUE = "emails"

celery_app = Celery(
    "zeynora",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.workers.order_emails",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=3600,
    timezone="Asia/Kolkata",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=120,
    task_soft_time_limit=90,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    # A worker lost mid-send must not leave the email unsent
    task_reject_on_worker_lost=True,
    task_routes={
        "app.workers.order_emails.*": {"queue": EMAIL_QUEUE},
    },
    broker_connection_retry_on_startup=True,
)
