# disparador/worker/celery_app.py
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from disparador.core.config import settings
from disparador.core.logging_config import setup_logging

celery_app = Celery(
    "disparador_tasks",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "disparador.worker.tasks_campaigns",
        "disparador.worker.tasks_billing",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_default_retry_delay=30,
    worker_prefetch_multiplier=1,
    worker_hijack_root_logger=False,
    beat_schedule={
        "process-scheduled-campaigns": {
            "task": "campaigns.process_scheduled",
            "schedule": crontab(),  # a cada minuto
        },
        "generate-monthly-invoices": {
            "task": "billing.generate_monthly_invoices",
            "schedule": crontab(minute=5, hour=0, day_of_month=1),
        },
        "mark-overdue-invoices": {
            "task": "billing.mark_overdue_invoices",
            "schedule": crontab(minute=0, hour=1),
        },
    },
)

@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    setup_logging()
