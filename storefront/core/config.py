from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """
    Settings class to retrieve environment variables.
    """

    DATABASE_URL: str = "sqlite+aiosqlite:///./storefront.db"
    LOG_LEVEL: str = "INFO"
    APP_BASE_URL: str = "http://localhost:8000"

    # Admin back-office access key (sent as X-Admin-Key)
    ADMIN_API_KEY: str = "change-me"

    # Guest sessions
    SESSION_COOKIE_NAME: str = "storefront_session"
    SESSION_COOKIE_MAX_AGE: int = 60 * 60 * 24 * 30

    # Cart and checkout
    CURRENCY: str = "EGP"
    DEFAULT_COUNTRY: str = "Egypt"
    CART_MAX_QUANTITY_PER_ITEM: int = 50
    CART_RETENTION_DAYS: int = 7
    CART_CLEANUP_INTERVAL_HOURS: int = 6

    # Paymob Configuration
    PAYMOB_BASE_URL: str = "https://accept.paymob.com/api/"
    PAYMOB_API_KEY: Optional[str] = None
    PAYMOB_INTEGRATION_ID_CARD: Optional[str] = None
    PAYMOB_INTEGRATION_ID_WALLET: Optional[str] = None
    PAYMOB_IFRAME_ID_CARD: Optional[str] = None
    PAYMOB_HMAC_SECRET: Optional[str] = None
    PAYMOB_TIMEOUT_SECONDS: float = 30.0
    PAYMOB_AUTH_RETRIES: int = 3
    PAYMOB_CHECKOUT_TIMEOUT_SECONDS: float = 60.0

    MAIL_USERNAME: str = ""
    MAIL_PASSWORD: str = ""
    MAIL_FROM: str = "noreply@example.com"
    MAIL_PORT: int = 587
    MAIL_SERVER: str = "localhost"
    MAIL_FROM_NAME: str = "Storefront"
    MAIL_STARTTLS: bool = True
    MAIL_SSL_TLS: bool = False
    USE_CREDENTIALS: bool = True
    VALIDATE_CERTS: bool = True
    MAIL_SUPPRESS_SEND: bool = False

    model_config = SettingsConfigDict(
        env_file='.env',
        extra='ignore',
    )


Config = Settings()
