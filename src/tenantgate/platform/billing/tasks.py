"""Scheduled billing tasks."""

from typing import Any

from tenantgate.platform.billing.ledger import expire_lapsed_trials
from tenantgate.platform.celery_app import celery_app
from tenantgate.platform.sweeps import run_sweep


@celery_app.task(name="billing.expire_lapsed_trials")
def expire_lapsed_trials_task() -> dict[str, Any]:
    """Periodic task: expire trials whose window has closed."""
    return run_sweep(expire_lapsed_trials)
