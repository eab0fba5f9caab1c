# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def checkout_payload(receipt) -> dict:
    return {
        "user_id": receipt.user_id,
        "items": [
            {
                "product_id": line.product_id,
                "name": line.product.name,
                "quantity": line.quantity,
                "price": str(line.product.price),
            }
            for line in receipt.items
        ],
        "total": str(receipt.total),
    }


class NotificationService:
    """
    Przekazuje sfinalizowane zamowienie (items + total) dalej.
    Formatowanie wiadomosci i wysylka sa poza tym serwisem - Celery robi to asynchronicznie.
    """

    @staticmethod
    def send_checkout_notification(receipt):
        send_checkout_notification_task.delay(checkout_payload(receipt))


@celery_app.task(name="storefront.services.notification_service.send_checkout_notification_task")
def send_checkout_notification_task(payload: dict):
    """
    Celery task - downstream formatter zamowienia dostaje {items, total}.
    Tutaj tylko logujemy.
    """
    logger.info(
        f"[NOTIFICATION] Checkout completed for user {payload.get('user_id')}: "
        f"{len(payload.get('items', []))} items, total {payload.get('total')}"
    )
    return {"user_id": payload.get("user_id"), "status": "sent"}
