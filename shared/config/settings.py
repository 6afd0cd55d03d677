import os
import warnings
from dataclasses import dataclass

from dotenv import load_dotenv

_INSECURE_JWT_SECRET = "insecure-default-change-me"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _database_url() -> str:
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit

    db_user = os.getenv("POSTGRES_USER", "postgres")
    db_password = os.getenv("POSTGRES_PASSWORD", "postgres")
    db_host = os.getenv("POSTGRES_HOST", "localhost")  # In Docker, this will be 'postgres'
    db_port = os.getenv("POSTGRES_PORT", "5433")
    db_name = os.getenv("POSTGRES_DB", "ecommerce")
    return f"postgresql+asyncpg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once at startup and passed around explicitly."""

    database_url: str = "sqlite+aiosqlite:///./storefront.db"
    db_echo: bool = False
    create_tables: bool = True

    jwt_secret_key: str = _INSECURE_JWT_SECRET
    jwt_algorithm: str = "HS256"

    app_url: str = "http://localhost:8000"
    shop_url: str = "http://localhost:3000"

    cinetpay_apikey: str | None = None
    cinetpay_site_id: str | None = None
    cinetpay_secret_key: str | None = None
    cinetpay_transaction_prefix: str = "SHOP"

    paydunya_mode: str = "test"
    paydunya_master_key: str | None = None
    paydunya_private_key: str | None = None
    paydunya_token: str | None = None
    paydunya_store_name: str = "Storefront"

    resend_api_key: str | None = None
    resend_from: str | None = None

    log_level: str = "INFO"
    otlp_endpoint: str = "http://localhost:4317"
    observability_enabled: bool = True
    rate_limit_enabled: bool = True
    provider_timeout_seconds: float = 15.0

    @property
    def cinetpay_configured(self) -> bool:
        return bool(self.cinetpay_apikey and self.cinetpay_site_id and self.cinetpay_secret_key)

    @property
    def paydunya_configured(self) -> bool:
        return bool(self.paydunya_master_key and self.paydunya_private_key and self.paydunya_token)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        jwt_secret = os.getenv("JWT_SECRET_KEY", "")
        if not jwt_secret:
            warnings.warn(
                "JWT_SECRET_KEY is not set. Using an insecure default. "
                "Set this env var in production!",
                stacklevel=2,
            )
            jwt_secret = _INSECURE_JWT_SECRET

        return cls(
            database_url=_database_url(),
            db_echo=_env_bool("DB_ECHO", False),
            create_tables=_env_bool("CREATE_TABLES", True),
            jwt_secret_key=jwt_secret,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            app_url=os.getenv("APP_URL", "http://localhost:8000").rstrip("/"),
            shop_url=os.getenv("SHOP_URL", "http://localhost:3000").rstrip("/"),
            cinetpay_apikey=os.getenv("CINETPAY_APIKEY"),
            cinetpay_site_id=os.getenv("CINETPAY_SITE_ID"),
            cinetpay_secret_key=os.getenv("CINETPAY_SECRET_KEY"),
            cinetpay_transaction_prefix=os.getenv("CINETPAY_TRANSACTION_PREFIX", "SHOP"),
            paydunya_mode=os.getenv("PAYDUNYA_MODE", "test"),
            paydunya_master_key=os.getenv("PAYDUNYA_MASTER_KEY"),
            paydunya_private_key=os.getenv("PAYDUNYA_PRIVATE_KEY"),
            paydunya_token=os.getenv("PAYDUNYA_TOKEN"),
            paydunya_store_name=os.getenv("PAYDUNYA_STORE_NAME", "Storefront"),
            resend_api_key=os.getenv("RESEND_API_KEY"),
            resend_from=os.getenv("RESEND_FROM"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            otlp_endpoint=os.getenv("OTLP_ENDPOINT", "http://localhost:4317"),
            observability_enabled=_env_bool("OBSERVABILITY_ENABLED", True),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", True),
            provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "15")),
        )
