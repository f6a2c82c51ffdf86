"""Celery application for queued condition evaluation."""

from __future__ import annotations

from celery import Celery
from celery.signals import worker_process_init

from rewardflow_api import __version__
from rewardflow_api.core.logging import configure_logging
from rewardflow_api.core.settings import settings
from rewardflow_api.observability.tracing import configure_tracing


def _resolve_backend_url() -> str:
    if settings.celery_result_backend:
        return settings.celery_result_backend
    return settings.redis_url


def _resolve_broker_url() -> str:
    if settings.celery_broker_url:
        return settings.celery_broker_url
    return settings.redis_url


celery_app = Celery(
    "rewardflow_api",
    broker=_resolve_broker_url(),
    backend=_resolve_backend_url(),
)

celery_app.conf.update(
    task_default_queue=settings.celery_default_queue,
    timezone="UTC",
    broker_connection_retry_on_startup=True,
    task_acks_late=True,
    # Redelivery is safe: completed conditions never dispatch twice.
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_routes={"conditions.evaluate_event": {"queue": settings.condition_evaluation_task_queue}},
)

celery_app.autodiscover_tasks(["rewardflow_api.celery_tasks"])


@worker_process_init.connect
def _configure_worker_observability(**_: object) -> None:
    configure_logging(service_name="rewardflow-worker", environment=settings.environment, version=__version__)
    configure_tracing(
        None,
        service_name="rewardflow-worker",
        service_version=__version__,
        environment=settings.environment,
    )


__all__ = ["celery_app"]
