import pytest
from httpx import ASGITransport, AsyncClient

from services.notification_service.dispatcher import NotificationDispatcher
from services.order_service.repository import OrderRepository
from services.payment_service.gateways import FakeGateway, GatewayRegistry
from services.product_service.models import Product
from services.product_service.repository import ProductRepository
from services.storefront import create_app
from shared.config.database import Database
from shared.config.settings import Settings
from shared.security import ADMIN_ROLE, Principal, create_access_token

TEST_SECRET = "test-secret-key"
CUSTOMER_EMAIL = "awa@example.test"
OTHER_EMAIL = "koffi@example.test"
ADMIN_EMAIL = "admin@example.test"


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every notification in memory; can be switched to fail like a broken mail provider."""

    def __init__(self):
        self.sent = []
        self.should_fail = False

    async def send(self, notification):
        if self.should_fail:
            raise RuntimeError("mail provider unavailable")
        self.sent.append(notification)

    def kinds(self) -> list[str]:
        return [n.kind for n in self.sent]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'storefront-test.db'}",
        create_tables=False,
        jwt_secret_key=TEST_SECRET,
        app_url="https://api.example.test",
        shop_url="https://shop.example.test",
        observability_enabled=False,
        rate_limit_enabled=False,
    )


@pytest.fixture
async def database(settings):
    db = Database(settings.database_url)
    await db.connect()
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def session(database):
    async with database.session() as db:
        yield db


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def gateways(gateway):
    return GatewayRegistry([gateway])


@pytest.fixture
def customer():
    return Principal(email=CUSTOMER_EMAIL)


@pytest.fixture
def seed_product(database):
    async def _seed(name="Shea butter 250g", price_minor=250_000, stock=10, is_active=True):
        async with database.session() as db:
            async with db.begin():
                product = await ProductRepository.add(
                    db,
                    Product(
                        name=name,
                        slug=name.lower().replace(" ", "-"),
                        price_minor=price_minor,
                        stock=stock,
                        is_active=is_active,
                    ),
                )
        return product.id

    return _seed


@pytest.fixture
def stock_of(database):
    async def _stock(product_id):
        async with database.session() as db:
            async with db.begin():
                return await ProductRepository.get_stock(db, product_id)

    return _stock


@pytest.fixture
def load_order(database):
    """Read an order through a fresh session, as a later request would."""

    async def _load(order_id):
        async with database.session() as db:
            async with db.begin():
                return await OrderRepository.get(db, order_id)

    return _load


@pytest.fixture
def app(settings, database, gateways, dispatcher):
    return create_app(settings, database=database, gateways=gateways, dispatcher=dispatcher)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


def bearer(email=CUSTOMER_EMAIL, role=None):
    claims = {"sub": email}
    if role:
        claims["role"] = role
    return {"Authorization": f"Bearer {create_access_token(claims, TEST_SECRET)}"}


@pytest.fixture
def customer_headers():
    return bearer(CUSTOMER_EMAIL)


@pytest.fixture
def admin_headers():
    return bearer(ADMIN_EMAIL, role=ADMIN_ROLE)


@pytest.fixture
def other_headers():
    return bearer(OTHER_EMAIL)
