from dataclasses import dataclass


@dataclass(frozen=True)
class ProductRecord:
    """Read-only view of a catalog row, as seen by the order core."""

    id: int
    name: str
    slug: str
    price_minor: int
    stock: int
    is_active: bool

    def __post_init__(self):
        if self.price_minor < 0:
            raise ValueError(f"Product {self.id} has a negative price")
        if self.stock < 0:
            raise ValueError(f"Product {self.id} has negative stock")
