"""
Celery application configuration.

Hosts the scheduled sweeps: the daily usage snapshot, the daily near-limit
check and the trial lapse sweep.
"""

from typing import Any

import structlog
from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from tenantgate.platform.settings import settings

# Create Celery application
celery_app = Celery(
    "tenantgate_platform",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=[
        "tenantgate.platform.usage.tasks",
        "tenantgate.platform.billing.tasks",
    ],
)

# Configure Celery settings
celery_app.conf.update(
    task_default_queue="default",
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("low_priority", routing_key="low_priority"),
    ),
    task_routes={
        "usage.*": {"queue": "low_priority"},
        "billing.*": {"queue": "default"},
    },
    # Task execution settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.celery.timezone,
    enable_utc=True,
    # Task result settings
    result_expires=3600,  # 1 hour
    task_track_started=True,
    task_time_limit=1800,  # sweeps walk every tenant
    task_soft_time_limit=1500,
    # Worker settings
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,
)


@celery_app.on_after_finalize.connect  # type: ignore[misc]
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Register the daily sweeps with beat."""
    from tenantgate.platform.billing.tasks import expire_lapsed_trials_task
    from tenantgate.platform.usage.tasks import (
        flag_tenants_near_limits_task,
        record_daily_snapshots_task,
    )

    logger = structlog.get_logger(__name__)
    usage = settings.usage

    sender.add_periodic_task(
        crontab(hour=usage.snapshot_hour_utc, minute=0),
        record_daily_snapshots_task.s(),
        name="usage-record-daily-snapshots",
    )
    sender.add_periodic_task(
        crontab(hour=usage.limit_check_hour_utc, minute=0),
        flag_tenants_near_limits_task.s(),
        name="usage-flag-tenants-near-limits",
    )
    sender.add_periodic_task(
        crontab(hour=usage.trial_sweep_hour_utc, minute=0),
        expire_lapsed_trials_task.s(),
        name="billing-expire-lapsed-trials",
    )

    logger.info(
        "celery.periodic_tasks.registered",
        snapshot_hour=usage.snapshot_hour_utc,
        limit_check_hour=usage.limit_check_hour_utc,
        trial_sweep_hour=usage.trial_sweep_hour_utc,
    )
