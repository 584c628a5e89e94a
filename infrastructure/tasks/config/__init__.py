"""Celery app, task module list and beat schedule."""
from .celery import CELERY_IMPORTS, celery_app
from .beat import CELERY_BEAT_SCHEDULE

__all__ = ["celery_app", "CELERY_IMPORTS", "CELERY_BEAT_SCHEDULE"]
