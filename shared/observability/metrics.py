from prometheus_client import Counter, Histogram

# Business Metrics
ecomm_orders_created_total = Counter(
    "ecomm_orders_created_total",
    "Total orders persisted with a stock reservation",
    ["channel"]  # Labels: 'direct', 'cinetpay', 'paydunya', ...
)

ecomm_stock_reservation_failures_total = Counter(
    "ecomm_stock_reservation_failures_total",
    "Order creations rejected while reserving stock",
    ["reason"]  # Labels: 'insufficient_stock', 'product_unavailable'
)

ecomm_checkout_duration_seconds = Histogram(
    "ecomm_checkout_duration_seconds",
    "Checkout duration in seconds (order creation + invoice creation)"
)

ecomm_checkout_compensation_total = Counter(
    "ecomm_checkout_compensation_total",
    "Checkouts rolled back because the payment provider failed",
    ["provider"]
)

ecomm_payment_events_total = Counter(
    "ecomm_payment_events_total",
    "Payment events applied by the reconciliation engine",
    ["channel", "event", "outcome"]  # outcome: 'applied', 'noop', 'unknown_order'
)

ecomm_stock_recredit_total = Counter(
    "ecomm_stock_recredit_total",
    "Orders whose reserved stock was credited back",
    ["reason"]  # Labels: 'payment_failed', 'admin_cancel', 'checkout_failed'
)

ecomm_notification_failures_total = Counter(
    "ecomm_notification_failures_total",
    "Post-commit notifications that could not be delivered",
    ["kind"]
)
