from .setup import setup_observability
from .metrics import (
    ecomm_orders_created_total,
    ecomm_stock_reservation_failures_total,
    ecomm_checkout_duration_seconds,
    ecomm_checkout_compensation_total,
    ecomm_payment_events_total,
    ecomm_stock_recredit_total,
    ecomm_notification_failures_total,
)
