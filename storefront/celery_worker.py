# storefront/celery_worker.py
from celery import Celery

from storefront.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND, PRUNE_INTERVAL_SECONDS

celery_app = Celery(
    "storefront",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# WAŻNE: Explicite importuj taski, żeby Celery je zarejestrował
celery_app.conf.imports = (
    "storefront.tasks.prune",
    "storefront.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "prune-cart-lines": {
        "task": "storefront.tasks.prune.prune_cart_lines_task",
        "schedule": PRUNE_INTERVAL_SECONDS,
    },
}

celery_app.conf.timezone = "UTC"
