"""
Celery configuration for background tasks
"""
from celery import Celery

from app.core.config import settings

# Create Celery instance
celery_app = Celery(
    "comprobantes",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.modules.comprobantes.tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=5 * 60,  # 5 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Result backend settings
    result_expires=3600,  # 1 hour

    # Task routes for different queues
    task_routes={
        "app.modules.comprobantes.tasks.*": {"queue": "comprobantes"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "sweep-stale-comprobantes": {
            "task": "app.modules.comprobantes.tasks.sweep_stale_comprobantes",
            "schedule": 300.0,  # Every 5 minutes
        },
    }
)

if __name__ == "__main__":
    celery_app.start()
