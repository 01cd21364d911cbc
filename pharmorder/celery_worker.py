# pharmorder/celery_worker.py
from celery import Celery

from pharmorder.utils.settings import (
    CELERY_ALWAYS_EAGER,
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
)

# worker: wszystkie modele zarejestrowane zanim taski zrobią pierwsze zapytanie
import pharmorder.data.models  # noqa: E402,F401

celery_app = Celery(
    "pharmorder",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# taski importowane jawnie, żeby worker je zarejestrował
celery_app.conf.imports = (
    "pharmorder.tasks.expire",
    "pharmorder.tasks.credit_reminders",
    "pharmorder.services.notification_service",
    "pharmorder.services.audit_service",
)

celery_app.conf.beat_schedule = {
    "expire-carts-every-hour": {
        "task": "pharmorder.tasks.expire.expire_carts_task",
        "schedule": 60.0 * 60,
    },
    "credit-due-reminders-daily": {
        "task": "pharmorder.tasks.credit_reminders.credit_due_reminders_task",
        "schedule": 60.0 * 60 * 24,
    },
}

celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"

# testy / dev bez brokera: taski wykonywane od razu w procesie
celery_app.conf.task_always_eager = CELERY_ALWAYS_EAGER
celery_app.conf.task_eager_propagates = False
celery_app.conf.task_store_eager_result = False
