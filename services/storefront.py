from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import structlog

from shared.config.database import Database
from shared.config.settings import Settings
from shared.errors import register_exception_handlers
from shared.observability import setup_observability
from shared.security import limiter

# IMPORTANT: importing the routers imports every model so they register with Base
from services.notification_service.dispatcher import NotificationDispatcher, build_dispatcher
from services.order_service.router import admin_router, router as order_router
from services.payment_service.gateways import GatewayRegistry, build_gateways
from services.payment_service.router import checkout_router, payments_router

logger = structlog.get_logger(__name__)

public_router = APIRouter()


@public_router.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "storefront", "status": "running"}


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    gateways: GatewayRegistry | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> FastAPI:
    """Assemble the API. Collaborators default to what Settings describes; tests pass their own."""
    settings = settings or Settings.from_env()
    database = database or Database(settings.database_url, echo=settings.db_echo)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await database.connect()
        if settings.create_tables:
            await database.create_all()
        logger.info("storefront_started", database=database.engine.url.render_as_string(hide_password=True))
        try:
            yield
        finally:
            await database.dispose()

    app = FastAPI(title="Storefront Orders", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database
    app.state.gateways = gateways if gateways is not None else build_gateways(settings)
    app.state.dispatcher = dispatcher if dispatcher is not None else build_dispatcher(settings)

    # --- OBSERVABILITY BOOTSTRAP ---
    setup_observability(app, "storefront_orders", settings)

    # --- RATE LIMITING ---
    limiter.enabled = settings.rate_limit_enabled
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    register_exception_handlers(app)

    app.include_router(public_router)
    app.include_router(order_router)
    app.include_router(admin_router)
    app.include_router(checkout_router)
    app.include_router(payments_router)
    return app
