from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .domain import OrderItemRecord, OrderProjection, OrderState
from .models import Order


def to_state(order: Order) -> OrderState:
    return OrderState(
        id=order.id,
        email=order.email,
        status=order.status,
        shipping_status=order.shipping_status,
        payment_status=order.payment_status,
        total_minor=order.total_minor,
        items=tuple(
            OrderItemRecord(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_minor=item.unit_price_minor,
                line_total_minor=item.line_total_minor,
                product_name_snapshot=item.product_name_snapshot,
                product_slug_snapshot=item.product_slug_snapshot,
            )
            for item in order.items
        ),
        paid_at=order.paid_at,
    )


def to_projection(order: Order, changed: bool = False) -> OrderProjection:
    return OrderProjection(
        order_id=order.id,
        status=order.status,
        payment_status=order.payment_status,
        shipping_status=order.shipping_status,
        payment_method=order.payment_method,
        paid_at=order.paid_at,
        changed=changed,
    )


class OrderRepository:
    """Order persistence. Callers own the transaction; nothing here commits."""

    @staticmethod
    async def add(db: AsyncSession, order: Order) -> Order:
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def get(db: AsyncSession, order_id: str) -> Order | None:
        result = await db.execute(select(Order).where(Order.id == order_id))
        return result.scalars().first()

    @staticmethod
    async def get_for_update(db: AsyncSession, order_id: str) -> Order | None:
        # Row lock on PostgreSQL only; writes that depend on the read go through compare_and_set
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def find_by_provider_ref(db: AsyncSession, provider_ref: str) -> Order | None:
        result = await db.execute(select(Order).where(Order.payment_provider_ref == provider_ref))
        return result.scalars().first()

    @staticmethod
    async def get_by_provider_ref_for_update(db: AsyncSession, provider_ref: str) -> Order | None:
        result = await db.execute(
            select(Order)
            .where(Order.payment_provider_ref == provider_ref)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def compare_and_set(db: AsyncSession, expected: OrderState, values: dict) -> bool:
        """Write ``values`` only if the row still has the statuses ``expected`` was read with.

        Returns False when another transaction moved the order first. The row
        lock in ``*_for_update`` is not enough on its own: SQLite ignores it.
        """
        result = await db.execute(
            update(Order)
            .where(
                Order.id == expected.id,
                Order.status == expected.status,
                Order.payment_status == expected.payment_status,
                Order.shipping_status == expected.shipping_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def list_all(db: AsyncSession) -> list[Order]:
        result = await db.execute(select(Order).order_by(Order.created_at.desc(), Order.id))
        return list(result.scalars().all())

    @staticmethod
    async def list_for_email(db: AsyncSession, email: str) -> list[Order]:
        result = await db.execute(
            select(Order).where(Order.email == email).order_by(Order.created_at.desc(), Order.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def attach_invoice(order: Order, provider_ref: str, checkout_url: str) -> None:
        order.payment_provider_ref = provider_ref
        order.payment_checkout_url = checkout_url
