"""
Order lifecycle rules.

Pure decisions over ``OrderState``: given the current state and an incoming
payment event or admin request, produce the ``Transition`` to write (or
``None`` for a no-op). Callers load the row, ask for a plan, write it only
if the row still holds the state the plan was made from, then handle side
effects; nothing in here touches the database.

Every branch on a status enum ends in an explicit ``raise`` so a newly added
member cannot silently fall through to a default.
"""
import enum
from dataclasses import dataclass
from datetime import datetime

from shared.errors import InvalidTransition, PaymentNotConfirmed
from .domain import OrderState
from .models import OrderStatus, PaymentStatus, ShippingStatus


class PaymentEvent(str, enum.Enum):
    """A provider status after mapping onto the order's vocabulary."""

    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    PENDING = "PENDING"
    WAITING = "WAITING"  # operator / customer confirmation still outstanding at the provider


# Shipping steps that mean goods have physically left (or are about to leave) the warehouse
ADVANCED_SHIPPING = frozenset(
    {ShippingStatus.SHIPPED, ShippingStatus.DELIVERED, ShippingStatus.RECEIVED}
)


@dataclass(frozen=True)
class Transition:
    status: OrderStatus
    payment_status: PaymentStatus
    shipping_status: ShippingStatus
    mark_paid: bool = False
    recredit_stock: bool = False
    notify_paid: bool = False
    notify_shipping: bool = False


@dataclass(frozen=True)
class AdminUpdate:
    status: OrderStatus | None = None
    shipping_status: ShippingStatus | None = None


def ensure_shipping_allowed(target: ShippingStatus, effective_payment: PaymentStatus) -> None:
    """Fulfillment guard: no physical progress before the money is confirmed."""
    if target is ShippingStatus.PREPARATION:
        return
    if target in ADVANCED_SHIPPING:
        if effective_payment is not PaymentStatus.PAID:
            raise PaymentNotConfirmed(
                f"Cannot move shipping to {target.value}: payment is {effective_payment.value}"
            )
        return
    raise ValueError(f"Unhandled shipping status {target!r}")


def plan_payment_event(state: OrderState, event: PaymentEvent) -> Transition | None:
    if event is PaymentEvent.WAITING or event is PaymentEvent.PENDING:
        return None

    if event is PaymentEvent.PAID:
        if state.is_paid:
            return None
        cancelled = state.status is OrderStatus.CANCELLED
        return Transition(
            # a late payment on a cancelled order is recorded but does not revive it
            status=OrderStatus.CANCELLED if cancelled else OrderStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            shipping_status=state.shipping_status,
            mark_paid=True,
            notify_paid=not cancelled,
        )

    if event is PaymentEvent.FAILED or event is PaymentEvent.CANCELLED:
        if state.is_paid:
            return None
        target = PaymentStatus.FAILED if event is PaymentEvent.FAILED else PaymentStatus.CANCELLED
        if (
            state.shipping_status is ShippingStatus.PREPARATION
            and state.status is not OrderStatus.CANCELLED
        ):
            return Transition(
                status=OrderStatus.CANCELLED,
                payment_status=target,
                shipping_status=state.shipping_status,
                recredit_stock=True,
            )
        if state.payment_status is target:
            return None
        # Goods may already be in transit: record the payment outcome only.
        return Transition(
            status=state.status,
            payment_status=target,
            shipping_status=state.shipping_status,
        )

    raise ValueError(f"Unhandled payment event {event!r}")


def plan_admin_update(state: OrderState, update: AdminUpdate) -> Transition:
    status = state.status
    payment = state.payment_status
    shipping = state.shipping_status
    mark_paid = recredit = notify_paid = notify_shipping = False

    if update.status is not None:
        if state.status is OrderStatus.CANCELLED and update.status is not OrderStatus.CANCELLED:
            raise InvalidTransition(
                "A cancelled order cannot be reopened; its stock reservation was released",
                code="ORDER_CANCELLED",
            )

        if update.status is OrderStatus.CONFIRMED:
            if payment is not PaymentStatus.PAID:
                # Manual confirmation is treated as an authoritative payment.
                payment = PaymentStatus.PAID
                mark_paid = True
                notify_paid = True
        elif update.status is OrderStatus.CANCELLED:
            if state.status is not OrderStatus.CANCELLED:
                if payment is not PaymentStatus.PAID:
                    payment = PaymentStatus.CANCELLED
                recredit = state.shipping_status is ShippingStatus.PREPARATION
        elif update.status is OrderStatus.PENDING:
            pass
        else:
            raise ValueError(f"Unhandled order status {update.status!r}")
        status = update.status

    if update.shipping_status is not None:
        target = update.shipping_status
        if status is OrderStatus.CANCELLED and target in ADVANCED_SHIPPING:
            raise InvalidTransition(
                f"Cannot move a cancelled order to {target.value}",
                code="ORDER_CANCELLED",
            )
        ensure_shipping_allowed(target, payment)
        notify_shipping = target is not state.shipping_status and target in ADVANCED_SHIPPING
        shipping = target

    return Transition(
        status=status,
        payment_status=payment,
        shipping_status=shipping,
        mark_paid=mark_paid,
        recredit_stock=recredit,
        notify_paid=notify_paid,
        notify_shipping=notify_shipping,
    )


def transition_values(state: OrderState, transition: Transition, now: datetime) -> dict:
    """Columns a planned transition changes on the stored row; empty when it changes nothing."""
    values = {}
    if transition.status is not state.status:
        values["status"] = transition.status
    if transition.payment_status is not state.payment_status:
        values["payment_status"] = transition.payment_status
    if transition.shipping_status is not state.shipping_status:
        values["shipping_status"] = transition.shipping_status
    if transition.mark_paid and state.paid_at is None:
        values["paid_at"] = now
    return values
