import os
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security import Principal, get_current_user, limiter

from .reconciliation import ReconciliationEngine
from .schemas import CheckoutRequest, CheckoutResponse, NotificationAck, PaymentStatusResponse
from .service import PaymentService

CHECKOUT_RATE_LIMIT = os.getenv("CHECKOUT_RATE_LIMIT", "20/minute")

checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])
payments_router = APIRouter(prefix="/payments", tags=["payments"])


def get_payment_service(request: Request) -> PaymentService:
    state = request.app.state
    return PaymentService(state.gateways, ReconciliationEngine(state.dispatcher))


# --- CUSTOMER ---

@checkout_router.get("/status", response_model=PaymentStatusResponse)
async def payment_status(
    transaction_id: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    projection = await service.poll_status(db, principal, transaction_id)
    if projection is None:
        return PaymentStatusResponse.unknown()
    return PaymentStatusResponse.from_projection(projection)


@checkout_router.post("/{provider}", response_model=CheckoutResponse, status_code=201)
@limiter.limit(CHECKOUT_RATE_LIMIT)
async def start_checkout(
    request: Request,  # Required by SlowAPI
    provider: str,
    data: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.start_checkout(db, principal, provider, data)
    return CheckoutResponse(
        order_id=result.order.id,
        provider=result.order.payment_provider.value,
        transaction_id=result.invoice.provider_ref,
        payment_url=result.invoice.checkout_url,
        total_minor=result.order.total_minor,
    )


# --- PROVIDER CALLBACKS (no bearer token; authenticated by signature) ---

@payments_router.post("/{provider}/notify", response_model=NotificationAck)
async def payment_notification(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    form = await request.form()
    fields = {key: str(value) for key, value in form.multi_items()}
    # Only SignatureInvalid escapes; anything else is acknowledged
    # so the provider does not keep retrying a notification we already re-checked.
    await service.handle_notification(db, provider, fields, request.headers)
    return NotificationAck()


@payments_router.get("/{provider}/notify", response_model=NotificationAck, include_in_schema=False)
async def payment_notification_ping(provider: str):
    # Providers ping the notify URL with GET when it is registered
    return NotificationAck()


@payments_router.api_route("/{provider}/return", methods=["GET", "POST"], include_in_schema=False)
async def payment_return(
    provider: str,
    request: Request,
    transaction_id: str | None = None,
    token: str | None = None,
):
    reference = transaction_id or token
    if reference is None and request.method == "POST":
        form = await request.form()
        reference = form.get("transaction_id") or form.get("cpm_trans_id") or form.get("token")

    shop_url = request.app.state.settings.shop_url.rstrip("/")
    target = f"{shop_url}/checkout/return"
    if reference:
        target = f"{target}?{urlencode({'transaction_id': reference})}"
    return RedirectResponse(target, status_code=302)
