from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .domain import ProductRecord
from .models import Product


def to_record(product: Product) -> ProductRecord:
    return ProductRecord(
        id=product.id,
        name=product.name,
        slug=product.slug,
        price_minor=product.price_minor,
        stock=product.stock,
        is_active=product.is_active,
    )


class ProductRepository:
    """Catalog reads plus the two stock writes the order core relies on.

    None of these methods commit: callers own the transaction.
    """

    @staticmethod
    async def add(db: AsyncSession, product: Product) -> Product:
        db.add(product)
        await db.flush()
        return product

    @staticmethod
    async def get_by_ids(db: AsyncSession, product_ids: list[int]) -> dict[int, ProductRecord]:
        if not product_ids:
            return {}
        result = await db.execute(select(Product).where(Product.id.in_(product_ids)))
        return {p.id: to_record(p) for p in result.scalars().all()}

    @staticmethod
    async def get_stock(db: AsyncSession, product_id: int) -> int | None:
        result = await db.execute(select(Product.stock).where(Product.id == product_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def reserve_stock(db: AsyncSession, product_id: int, quantity: int) -> bool:
        """Conditional decrement; the UPDATE itself is the concurrency gate.

        Returns False when no row matched (stock too low, product gone or inactive).
        """
        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                Product.stock >= quantity,
                Product.is_active.is_(True),
            )
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def restore_stock(db: AsyncSession, product_id: int, quantity: int) -> bool:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1
