from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from shared.errors import ProductUnavailable
from .domain import ProductRecord
from .repository import ProductRepository

logger = structlog.get_logger(__name__)


class CatalogReader:
    """The read contract and the stock writes of the catalog, seen from the order core."""

    @staticmethod
    async def get_available_products(db: AsyncSession, product_ids: list[int]) -> dict[int, ProductRecord]:
        """Return every requested product, or raise ProductUnavailable for the first missing/inactive one."""
        products = await ProductRepository.get_by_ids(db, product_ids)
        for product_id in product_ids:
            product = products.get(product_id)
            if product is None or not product.is_active:
                raise ProductUnavailable(product_id)
        return products

    @staticmethod
    async def reserve_stock(db: AsyncSession, product_id: int, quantity: int) -> bool:
        return await ProductRepository.reserve_stock(db, product_id, quantity)

    @staticmethod
    async def recredit_items(db: AsyncSession, items, reason: str) -> None:
        """Give back the reservation of every order line. Caller owns the transaction."""
        for item in items:
            restored = await ProductRepository.restore_stock(db, item.product_id, item.quantity)
            if not restored:
                # The product row vanished; nothing to give back to, keep going for the rest.
                logger.warning(
                    "stock_recredit_missing_product",
                    product_id=item.product_id,
                    quantity=item.quantity,
                    reason=reason,
                )
