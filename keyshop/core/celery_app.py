"""
Celery application: broker and result backend from settings.
Tasks are in keyshop.workers.tasks (notifications, payment reconciliation).
"""
from celery import Celery
from celery.schedules import crontab

from keyshop.core.config import settings

celery_app = Celery(
    "keyshop",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "keyshop.workers.tasks.notify",
        "keyshop.workers.tasks.reconcile",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=300,
    result_expires=86400,
    beat_schedule={
        "reconcile-pending-payments": {
            "task": "keyshop.workers.tasks.reconcile.reconcile_pending_payments",
            "schedule": crontab(minute="*/5"),
        },
    },
)

celery_app.autodiscover_tasks(["keyshop.workers.tasks"])
