from celery import Celery
from celery.schedules import crontab
from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "adpulse",
    broker=settings.effective_celery_broker_url,
    backend=settings.effective_celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours
    task_routes={
        "app.tasks.*": {"queue": "default"},
    },
)

# Celery Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "sync-facebook-accounts": {
        "task": "app.tasks.facebook_sync.sync_all_accounts",
        "schedule": crontab(minute=f"*/{settings.sync_interval_minutes}"),
    },
    "refresh-facebook-tokens": {
        "task": "app.tasks.facebook_sync.refresh_tokens",
        "schedule": crontab(hour=3, minute=0),  # Daily at 03:00 UTC
    },
}

# Auto-discover tasks
celery_app.autodiscover_tasks(["app.tasks"], related_name="facebook_sync")
