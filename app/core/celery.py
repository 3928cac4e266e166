"""
Celery configuration for background tasks
"""
from celery import Celery
import logging

logger = logging.getLogger(__name__)

# Import settings with error handling
try:
    from app.core.config import settings
    redis_url = settings.redis_url
    sweep_interval = float(settings.AUTO_CLOSE_SWEEP_INTERVAL_SECONDS)
except Exception as e:
    logger.warning(f"Could not load settings: {e}")
    # Fallback for development
    redis_url = "redis://redis:6379/0"
    sweep_interval = 300.0

# Create Celery instance
celery_app = Celery(
    "caja",
    broker=redis_url,
    backend=redis_url,
    include=[
        "app.modules.pos.tasks",
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
    task_soft_time_limit=8 * 60,  # 8 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Result backend settings
    result_expires=3600,  # 1 hour

    # Task routes for different queues
    task_routes={
        "app.modules.pos.tasks.*": {"queue": "pos"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "automatic-closing-sweep": {
            "task": "app.modules.pos.tasks.run_automatic_closing_sweeps",
            "schedule": sweep_interval,
        },
    }
)

if __name__ == "__main__":
    celery_app.start()
