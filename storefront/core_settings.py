from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Literal, Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "storefront"
    POSTGRES_USER: str = "storefront"
    POSTGRES_PASSWORD: str = "storefront"
    # Overrides the Postgres URL when set (tests use SQLite)
    DATABASE_URL: Optional[str] = None
    RUN_MIGRATIONS: bool = True

    # Cart snapshots live in Redis when reachable, in-process otherwise
    REDIS_URL: Optional[str] = None
    CART_TTL_SECONDS: int = 24 * 60 * 60

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE: int = 300
    CURRENCY: str = "cad"
    SHIPPING_COUNTRIES: list[str] = ["CA"]
    SHOP_URL: str = "http://localhost:3003"

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    ADMIN_EMAILS: list[str] = []

    ALLOW_GUEST_CHECKOUT: bool = True
    ADDRESS_REQUIRED_AT_CHECKOUT: Literal["never", "guests", "always"] = "never"
    PENDING_ORDER_TTL_HOURS: int = 96

    LOG_LEVEL: str = "INFO"
    SERVICE_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def stripe_configured(self) -> bool:
        return self.STRIPE_SECRET_KEY.startswith(("sk_test_", "sk_live_", "rk_"))

@lru_cache
def get_settings() -> Settings:
    return Settings()
