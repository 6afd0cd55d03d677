"""Order creation: catalog pricing and all-or-nothing stock reservation."""

import asyncio

import pytest

from services.order_service.models import OrderStatus, PaymentStatus, ShippingStatus
from services.order_service.schemas import CartLine, OrderCreate
from services.order_service.service import OrderService
from shared.errors import Forbidden, InsufficientStock, ProductUnavailable, ValidationError
from shared.security import Principal


def _cart(*lines, **extra):
    return OrderCreate(
        items=[CartLine(product_id=pid, quantity=qty) for pid, qty in lines],
        **extra,
    )


class TestCreateOrder:
    async def test_creates_pending_order_priced_from_catalog(self, session, customer, seed_product, stock_of):
        pid = await seed_product(price_minor=150_000, stock=5)

        order = await OrderService.create_order(session, customer, _cart((pid, 2), customer_name="Awa"))

        assert order.status is OrderStatus.PENDING
        assert order.payment_status is PaymentStatus.PENDING
        assert order.shipping_status is ShippingStatus.PREPARATION
        assert order.email == customer.email
        assert order.customer_name == "Awa"
        assert order.total_minor == 300_000
        assert [(i.product_id, i.quantity, i.unit_price_minor) for i in order.items] == [(pid, 2, 150_000)]
        assert order.items[0].product_name_snapshot == "Shea butter 250g"
        assert await stock_of(pid) == 3

    async def test_client_supplied_prices_are_ignored(self, session, customer, seed_product):
        pid = await seed_product(price_minor=100_000)
        data = OrderCreate.model_validate(
            {"items": [{"productId": pid, "quantity": 1, "unitPrice": 1}]}
        )

        order = await OrderService.create_order(session, customer, data)

        assert order.total_minor == 100_000

    async def test_duplicate_lines_are_merged(self, session, customer, seed_product, stock_of):
        pid = await seed_product(stock=5)

        order = await OrderService.create_order(session, customer, _cart((pid, 1), (pid, 2)))

        assert len(order.items) == 1
        assert order.items[0].quantity == 3
        assert await stock_of(pid) == 2

    async def test_last_unit_goes_to_the_first_buyer(self, session, customer, seed_product, stock_of):
        pid = await seed_product(stock=1)

        await OrderService.create_order(session, customer, _cart((pid, 1)))
        with pytest.raises(InsufficientStock) as exc_info:
            await OrderService.create_order(session, customer, _cart((pid, 1)))

        assert exc_info.value.product_id == pid
        assert await stock_of(pid) == 0

    async def test_concurrent_buyers_cannot_oversell(self, database, session, customer, seed_product, stock_of):
        pid = await seed_product(stock=5)

        async def buy():
            async with database.session() as db:
                try:
                    await OrderService.create_order(db, customer, _cart((pid, 3)))
                except InsufficientStock:
                    return "insufficient"
                return "ok"

        outcomes = await asyncio.gather(buy(), buy())

        assert sorted(outcomes) == ["insufficient", "ok"]
        assert await stock_of(pid) == 2
        assert len(await OrderService.list_orders_for(session, customer)) == 1

    async def test_multi_line_failure_reserves_nothing(
        self, session, customer, seed_product, stock_of
    ):
        plenty = await seed_product(name="Attieke 1kg", stock=10)
        scarce = await seed_product(name="Kente scarf", stock=1)

        with pytest.raises(InsufficientStock):
            await OrderService.create_order(session, customer, _cart((plenty, 3), (scarce, 2)))

        assert await stock_of(plenty) == 10
        assert await stock_of(scarce) == 1
        assert await OrderService.list_orders_for(session, customer) == []

    async def test_inactive_product_is_unavailable(self, session, customer, seed_product, stock_of):
        pid = await seed_product(is_active=False, stock=4)

        with pytest.raises(ProductUnavailable):
            await OrderService.create_order(session, customer, _cart((pid, 1)))
        assert await stock_of(pid) == 4

    async def test_unknown_product_is_unavailable(self, session, customer):
        with pytest.raises(ProductUnavailable):
            await OrderService.create_order(session, customer, _cart((9999, 1)))

    async def test_empty_cart_is_rejected(self, session, customer):
        with pytest.raises(ValidationError) as exc_info:
            await OrderService.create_order(session, customer, _cart())
        assert exc_info.value.code == "EMPTY_CART"

    async def test_non_positive_quantity_is_rejected(self, session, customer, seed_product):
        pid = await seed_product()
        with pytest.raises(ValidationError) as exc_info:
            await OrderService.create_order(session, customer, _cart((pid, 0)))
        assert exc_info.value.code == "INVALID_ITEM"

    async def test_free_cart_is_rejected(self, session, customer, seed_product, stock_of):
        pid = await seed_product(price_minor=0, stock=3)
        with pytest.raises(ValidationError) as exc_info:
            await OrderService.create_order(session, customer, _cart((pid, 1)))
        assert exc_info.value.code == "INVALID_AMOUNT"
        assert await stock_of(pid) == 3


class TestReadOrders:
    async def test_customer_sees_only_own_orders(self, session, customer, seed_product):
        pid = await seed_product()
        mine = await OrderService.create_order(session, customer, _cart((pid, 1)))
        other = Principal(email="koffi@example.test")
        await OrderService.create_order(session, other, _cart((pid, 1)))

        orders = await OrderService.list_orders_for(session, customer)

        assert [o.id for o in orders] == [mine.id]

    async def test_other_customer_cannot_read_order(self, session, customer, seed_product):
        pid = await seed_product()
        order = await OrderService.create_order(session, customer, _cart((pid, 1)))

        with pytest.raises(Forbidden):
            await OrderService.get_order_for(session, Principal(email="koffi@example.test"), order.id)
        admin = Principal(email="admin@example.test", role="ADMIN")
        assert (await OrderService.get_order_for(session, admin, order.id)).id == order.id
