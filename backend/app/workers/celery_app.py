"""
Celery application instance.

Configured with Redis broker and backend. Requests enqueue email and Slack
deliveries here so the response never waits on an upstream provider.
"""

from celery import Celery
from celery.signals import setup_logging

from app.core.config import settings

celery_app = Celery(
    "teamboard",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.email_tasks",
        "app.workers.slack_tasks",
    ],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Results
    result_expires=3600,
    # Retry policy
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Concurrency
    worker_prefetch_multiplier=1,
    # Local/test runs execute tasks in-process
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    # Routing
    task_default_queue="default",
    task_queues={
        "default": {},
        "email": {},
        "slack": {},
    },
    task_routes={
        "app.workers.email_tasks.*": {"queue": "email"},
        "app.workers.slack_tasks.*": {"queue": "slack"},
    },
)


@setup_logging.connect
def _configure_worker_logging(**kwargs: object) -> None:
    from app.core.logging import configure_logging

    configure_logging()
