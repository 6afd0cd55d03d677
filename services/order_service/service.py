from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from services.product_service.service import CatalogReader
from shared.errors import Forbidden, InsufficientStock, OrderNotFound, ProductUnavailable, ValidationError
from shared.observability import ecomm_orders_created_total, ecomm_stock_reservation_failures_total
from shared.security import Principal
from .domain import CustomerInfo, PricedCart, PricedLine
from .models import Order, OrderItem, OrderStatus, PaymentProvider, PaymentStatus, ShippingStatus, utcnow
from .repository import OrderRepository
from .schemas import CartLine, OrderCreate

logger = structlog.get_logger(__name__)


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _merge_lines(lines: list[CartLine]) -> list[tuple[int, int]]:
    """Validate the request shape and fold repeated products into one line."""
    if not lines:
        raise ValidationError("The order contains no items", code="EMPTY_CART")

    merged: dict[int, int] = {}
    for line in lines:
        if line.product_id <= 0 or line.quantity <= 0:
            raise ValidationError(
                f"Invalid line: product {line.product_id}, quantity {line.quantity}",
                code="INVALID_ITEM",
            )
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return list(merged.items())


def customer_from_request(principal: Principal, data: OrderCreate) -> CustomerInfo:
    return CustomerInfo(
        email=principal.email,
        customer_name=_clean_text(data.customer_name),
        shipping_address=_clean_text(data.shipping_address),
        notes=_clean_text(data.notes),
    )


class OrderService:

    @staticmethod
    async def price_cart(db: AsyncSession, lines: list[CartLine]) -> PricedCart:
        """Validate the cart and price every line from the catalog (client prices are ignored)."""
        requested = _merge_lines(lines)

        try:
            async with db.begin():
                products = await CatalogReader.get_available_products(db, [pid for pid, _ in requested])
        except ProductUnavailable:
            ecomm_stock_reservation_failures_total.labels(reason="product_unavailable").inc()
            raise

        cart = PricedCart(
            lines=tuple(
                PricedLine(
                    product_id=pid,
                    quantity=qty,
                    unit_price_minor=products[pid].price_minor,
                    product_name=products[pid].name,
                    product_slug=products[pid].slug,
                )
                for pid, qty in requested
            )
        )
        if cart.total_minor <= 0:
            raise ValidationError("Order total must be positive", code="INVALID_AMOUNT")
        return cart

    @staticmethod
    async def place_order(
        db: AsyncSession,
        cart: PricedCart,
        customer: CustomerInfo,
        provider: PaymentProvider | None = None,
    ) -> Order:
        """Reserve stock for every line and persist the order, all or nothing."""
        now = utcnow()
        try:
            async with db.begin():
                for line in cart.lines:
                    reserved = await CatalogReader.reserve_stock(db, line.product_id, line.quantity)
                    if not reserved:
                        # Raising here rolls back every decrement already made for this cart
                        raise InsufficientStock(line.product_id, line.product_name)

                order = Order(
                    email=customer.email,
                    customer_name=customer.customer_name,
                    total_minor=cart.total_minor,
                    status=OrderStatus.PENDING,
                    shipping_status=ShippingStatus.PREPARATION,
                    payment_status=PaymentStatus.PENDING,
                    payment_provider=provider,
                    shipping_address=customer.shipping_address,
                    notes=customer.notes,
                    created_at=now,
                    updated_at=now,
                    items=[
                        OrderItem(
                            product_id=line.product_id,
                            quantity=line.quantity,
                            unit_price_minor=line.unit_price_minor,
                            line_total_minor=line.line_total_minor,
                            product_name_snapshot=line.product_name,
                            product_slug_snapshot=line.product_slug,
                        )
                        for line in cart.lines
                    ],
                )
                await OrderRepository.add(db, order)
        except InsufficientStock as exc:
            ecomm_stock_reservation_failures_total.labels(reason="insufficient_stock").inc()
            logger.info("stock_reservation_failed", product_id=exc.product_id, email=customer.email)
            raise

        ecomm_orders_created_total.labels(channel=(provider.value.lower() if provider else "direct")).inc()
        logger.info(
            "order_created",
            order_id=order.id,
            total_minor=order.total_minor,
            lines=len(cart.lines),
            provider=provider.value if provider else None,
        )
        return order

    @staticmethod
    async def create_order(db: AsyncSession, principal: Principal, data: OrderCreate) -> Order:
        cart = await OrderService.price_cart(db, data.items)
        return await OrderService.place_order(db, cart, customer_from_request(principal, data))

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Order:
        async with db.begin():
            order = await OrderRepository.get(db, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    @staticmethod
    async def get_order_for(db: AsyncSession, principal: Principal, order_id: str) -> Order:
        order = await OrderService.get_order(db, order_id)
        if order.email != principal.email and not principal.is_admin:
            raise Forbidden("This order belongs to another customer")
        return order

    @staticmethod
    async def list_orders_for(db: AsyncSession, principal: Principal) -> list[Order]:
        async with db.begin():
            return await OrderRepository.list_for_email(db, principal.email)

    @staticmethod
    async def list_all_orders(db: AsyncSession) -> list[Order]:
        async with db.begin():
            return await OrderRepository.list_all(db)
