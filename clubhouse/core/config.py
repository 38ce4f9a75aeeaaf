"""Configuration settings for the Clubhouse backend.

Wraps environment variables and provides defaults.
"""

from typing import Optional

from pydantic import PostgresDsn, ValidationInfo, field_validator
from pydantic_settings import BaseSettings

_PLACEHOLDER_MARKERS = ("your_stripe", "placeholder")


class Settings(BaseSettings):
    """Pydantic settings class.

    Attributes:
    ----------
        PROJECT_NAME (str): The name of the project.
        LOCAL_DEVELOPMENT (bool): Whether the application is running locally.
        ENVIRONMENT (str): The deployment environment (local, dev, test, prod).
        DEBUG (bool): Whether debug mode is enabled.
        LOG_LEVEL (str): The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        POSTGRES_HOST (str): The PostgreSQL server hostname.
        POSTGRES_DB (str): The PostgreSQL database name.
        POSTGRES_USER (str): The PostgreSQL username.
        POSTGRES_PASSWORD (str): The PostgreSQL password.
        SQLALCHEMY_ASYNC_DATABASE_URI (Optional[PostgresDsn]): The SQLAlchemy async database URI.
        RUN_ALEMBIC_MIGRATIONS (bool): Whether to run the alembic migrations on startup.
        REDIS_HOST (str): The Redis server hostname.
        REDIS_PORT (int): The Redis server port.
        REDIS_PASSWORD (Optional[str]): The Redis password (if authentication is enabled).
        REDIS_DB (int): The Redis database number.
        STRIPE_SECRET_KEY (Optional[str]): Stripe secret API key.
        STRIPE_PUBLISHABLE_KEY (Optional[str]): Stripe publishable key.
        STRIPE_WEBHOOK_SECRET (Optional[str]): Shared secret used to verify Stripe webhooks.
        BILLING_CURRENCY (str): ISO currency code used for fees and ledger rows.
        MEMBERSHIP_PRODUCT_NAME (str): Product name shown on the hosted checkout page.
        TRIAL_ANCHOR_TIMEZONE (str): Zone in which fixed calendar trial dates are anchored.
        TRIAL_ANCHOR_HOUR (int): Hour of day at which fixed calendar trial dates are anchored.
        CRON_SECRET (Optional[str]): Bearer token required by the expiry sweep endpoint.
        EXPIRY_EXEMPT_ROLES (str): Comma separated roles never expired by the sweeper.
        BILLING_SYNC_MAX_ATTEMPTS (int): Attempts per member during a bulk subscription sync.
        APP_FULL_URL (Optional[str]): Public URL of the member-facing app.
        ADDITIONAL_CORS_ORIGINS (Optional[str]): Extra comma separated CORS origins.
        FRONTEND_LOCAL_DEVELOPMENT_PORT (int): Port for local frontend development.
    """

    PROJECT_NAME: str = "Clubhouse"
    LOCAL_DEVELOPMENT: bool = False
    ENVIRONMENT: str = "local"
    FRONTEND_LOCAL_DEVELOPMENT_PORT: int = 3000

    # Debug configuration
    DEBUG: bool = False

    # Logging configuration
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_DB: str = "clubhouse"
    POSTGRES_USER: str = "clubhouse"
    POSTGRES_PASSWORD: str = ""
    SQLALCHEMY_ASYNC_DATABASE_URI: Optional[PostgresDsn] = None

    RUN_ALEMBIC_MIGRATIONS: bool = False

    # Redis configuration
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0

    # Stripe configuration
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_PUBLISHABLE_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    # Membership billing
    BILLING_CURRENCY: str = "cad"
    MEMBERSHIP_PRODUCT_NAME: str = "Annual Membership"
    TRIAL_ANCHOR_TIMEZONE: str = "UTC"
    TRIAL_ANCHOR_HOUR: int = 12
    EXPIRY_EXEMPT_ROLES: str = "admin"
    BILLING_SYNC_MAX_ATTEMPTS: int = 3

    # Scheduler shared secret
    CRON_SECRET: Optional[str] = None

    APP_FULL_URL: Optional[str] = None
    ADDITIONAL_CORS_ORIGINS: Optional[str] = None

    @field_validator("TRIAL_ANCHOR_HOUR")
    def validate_anchor_hour(cls, v: int) -> int:
        """Ensure the trial anchor hour is a valid hour of day.

        Args:
            v: The configured hour.

        Returns:
            int: The validated hour.
        """
        if not 0 <= v <= 23:
            raise ValueError("TRIAL_ANCHOR_HOUR must be between 0 and 23")
        return v

    @field_validator("SQLALCHEMY_ASYNC_DATABASE_URI", mode="before")
    def assemble_db_connection(cls, v: Optional[str], info: ValidationInfo) -> PostgresDsn:
        """Build the SQLAlchemy database URI.

        Args:
        ----
            v (Optional[str]): The value of the SQLALCHEMY_DATABASE_URI setting.
            info (ValidationInfo): The validation context containing all field values.

        Returns:
        -------
            PostgresDsn: The assembled SQLAlchemy async database URI.

        """
        if isinstance(v, str):
            return v

        return PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=info.data.get("POSTGRES_USER"),
            password=info.data.get("POSTGRES_PASSWORD"),
            host=info.data.get("POSTGRES_HOST", "localhost"),
            path=f"{info.data.get('POSTGRES_DB') or ''}",
        )

    @property
    def STRIPE_ENABLED(self) -> bool:  # noqa: N802
        """Whether Stripe credentials are present and not placeholder values."""
        keys = (self.STRIPE_SECRET_KEY, self.STRIPE_PUBLISHABLE_KEY)
        if not all(keys):
            return False
        return not any(marker in key for key in keys for marker in _PLACEHOLDER_MARKERS)

    @property
    def expiry_exempt_roles(self) -> list[str]:
        """Roles excluded from the automatic expiry sweep."""
        return [role.strip() for role in self.EXPIRY_EXEMPT_ROLES.split(",") if role.strip()]

    @property
    def app_url(self) -> str:
        """The app URL.

        Returns:
            str: The app URL.
        """
        if self.APP_FULL_URL:
            return self.APP_FULL_URL

        if self.ENVIRONMENT == "local":
            return f"http://localhost:{self.FRONTEND_LOCAL_DEVELOPMENT_PORT}"
        return f"https://app.{self.ENVIRONMENT}-clubhouse.org"


settings = Settings()
