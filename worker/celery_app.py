from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init

from app.core.config import settings
from app.core.telemetry import setup_worker_telemetry

celery = Celery(
    "slotsync-worker",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["worker.tasks"],
)

celery.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.worker_concurrency,
    # the inbox lease must outlive a task
    task_time_limit=settings.event_task_time_limit_seconds,
    task_default_queue="default",
    task_routes={
        "worker.tasks.process_billing_event": {"queue": "billing"},
        "worker.tasks.run_slot_sweep": {"queue": "sweeps"},
        "worker.tasks.reconcile_locations": {"queue": "sweeps"},
    },
    timezone="UTC",
    beat_schedule={
        "slot-expiry-warning": {
            "task": "worker.tasks.run_slot_sweep",
            "schedule": crontab(hour=0, minute=30),
            "args": ["EXPIRY_WARNING"],
        },
        "slot-expiry": {
            "task": "worker.tasks.run_slot_sweep",
            "schedule": crontab(hour=1, minute=0),
            "args": ["SLOT_EXPIRY"],
        },
        "location-count-reconcile": {
            "task": "worker.tasks.reconcile_locations",
            "schedule": crontab(hour=3, minute=15),
        },
    },
)


@worker_process_init.connect
def _init_tracing(**_):
    setup_worker_telemetry("slotsync-worker")
