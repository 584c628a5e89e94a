"""Celery beat schedule configuration.

Entries follow the Celery docs layout so new periodic jobs can be copied in.
"""
from __future__ import annotations

from core.settings import payment_settings

CELERY_BEAT_SCHEDULE = {
    # Re-run reconciliation for entries whose last attempt exhausted its retries
    "payments-retry-reconciliation": {
        "task": "payments.retry_reconciliation",
        "schedule": payment_settings.reconciliation.retry_interval_seconds,
        "kwargs": {"limit": payment_settings.reconciliation.retry_batch_size},
    },
}
