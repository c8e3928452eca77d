from __future__ import annotations

from celery import Celery

from orgauthority.core.settings import settings

celery_app = Celery(
    "orgauthority",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["orgauthority.workers.invitations_worker"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)

celery_app.conf.beat_schedule = {
    "expire-stale-invitations": {
        "task": "orgauthority.workers.invitations_worker.expire_stale_invitations",
        "schedule": settings.invitation_sweep_minutes * 60.0,
    },
}
