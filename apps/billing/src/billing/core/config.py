from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import (
    AliasChoices,
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    TypeAdapter,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from billing.core.constants import (
    DEFAULT_CURRENCY,
    DEFAULT_ENV_FILE,
    SECRETS_DIR,
    SERVICE_NAME,
)


class Environment(StrEnum):
    """Deployment environments supported by the service."""

    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class AsyncPostgresDsn(AnyUrl):
    allowed_schemes = {"postgresql", "postgresql+asyncpg"}
    host_required = True


class DatabaseSettings(BaseModel):
    """Database connectivity configuration."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    url: AsyncPostgresDsn | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "DATABASE__URL", "database__url", "DATABASE_URL", "database_url"
        ),
    )
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: SecretStr = SecretStr("postgres")
    name: str = SERVICE_NAME
    echo: bool = False
    pool_size: int = Field(default=10, ge=1)
    max_overflow: int = Field(default=20, ge=0)
    pool_recycle_seconds: int = Field(default=1_800, ge=0)

    def _build_dsn(self) -> str:
        if self.url is not None:
            return str(self.url)

        password = quote_plus(self.password.get_secret_value())
        return (
            f"postgresql+asyncpg://{self.user}:{password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    @computed_field
    @property
    def dsn(self) -> str:
        """Assemble the SQLAlchemy async DSN."""
        return self._build_dsn()


class RedisSettings(BaseSettings):
    """Redis connection configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS__", extra="ignore")

    url: str = "redis://localhost:6379/0"


class RateLimitSettings(BaseModel):
    """Per-user rate limiter configuration for payment initiation."""

    model_config = ConfigDict(extra="ignore")

    payment_requests_per_window: int = Field(default=5, ge=1)
    window_seconds: int = Field(default=60, ge=1)


class CreditPackage(BaseModel):
    """One-off bundle of AI credits purchasable with mobile money."""

    model_config = ConfigDict(extra="ignore")

    code: str = Field(..., min_length=2, max_length=64)
    credits: int = Field(..., gt=0)
    amount: int = Field(..., gt=0)
    currency: str = Field(default=DEFAULT_CURRENCY, min_length=3, max_length=3)
    description: str | None = None

    @model_validator(mode="after")
    def _normalise(self) -> CreditPackage:
        self.code = self.code.strip().lower()
        self.currency = self.currency.upper()
        return self


class PaymentPlan(BaseModel):
    """Definition for a purchasable subscription plan."""

    model_config = ConfigDict(extra="ignore")

    code: str = Field(..., min_length=2, max_length=64)
    name: str = Field(..., min_length=2, max_length=120)
    tier: str = Field(..., min_length=2, max_length=32)
    monthly_amount: int = Field(..., gt=0)
    yearly_amount: int = Field(..., gt=0)
    monthly_credits: int = Field(default=0, ge=0)
    currency: str = Field(default=DEFAULT_CURRENCY, min_length=3, max_length=3)

    @model_validator(mode="after")
    def _normalise(self) -> PaymentPlan:
        self.code = self.code.strip().lower()
        self.tier = self.tier.strip().lower()
        self.currency = self.currency.upper()
        return self


def _default_credit_packages() -> dict[str, CreditPackage]:
    # TZS 50 per credit
    return {
        "credits_50": CreditPackage(
            code="credits_50",
            credits=50,
            amount=2_500,
            description="50 AI credits",
        ),
        "credits_100": CreditPackage(
            code="credits_100",
            credits=100,
            amount=5_000,
            description="100 AI credits",
        ),
        "credits_250": CreditPackage(
            code="credits_250",
            credits=250,
            amount=12_500,
            description="250 AI credits",
        ),
    }


def _default_payment_plans() -> dict[str, PaymentPlan]:
    return {
        "student": PaymentPlan(
            code="student",
            name="Student Plan",
            tier="student",
            monthly_amount=15_000,
            yearly_amount=150_000,
            monthly_credits=100,
        ),
        "pro": PaymentPlan(
            code="pro",
            name="Pro Plan",
            tier="pro",
            monthly_amount=29_000,
            yearly_amount=290_000,
            monthly_credits=500,
        ),
        "max": PaymentPlan(
            code="max",
            name="Max Plan",
            tier="max",
            monthly_amount=79_000,
            yearly_amount=790_000,
            monthly_credits=2_000,
        ),
    }


class PaymentsSettings(BaseModel):
    """Catalogue of credit packages and subscription plans."""

    model_config = ConfigDict(extra="ignore")

    default_currency: str = Field(
        default=DEFAULT_CURRENCY, min_length=3, max_length=3
    )
    credit_packages: dict[str, CreditPackage] = Field(
        default_factory=_default_credit_packages
    )
    plans: dict[str, PaymentPlan] = Field(default_factory=_default_payment_plans)

    @model_validator(mode="after")
    def _normalise(self) -> PaymentsSettings:
        self.default_currency = self.default_currency.upper()

        packages: dict[str, CreditPackage] = {}
        for key, package in self.credit_packages.items():
            normalised_key = key.strip().lower()
            if package.code != normalised_key:
                package = package.model_copy(update={"code": normalised_key})
            packages[normalised_key] = package
        self.credit_packages = packages

        plans: dict[str, PaymentPlan] = {}
        for key, plan in self.plans.items():
            normalised_key = key.strip().lower()
            if plan.code != normalised_key:
                plan = plan.model_copy(update={"code": normalised_key})
            plans[normalised_key] = plan
        self.plans = plans
        return self

    def get_plan(self, code: str) -> PaymentPlan:
        normalised = code.strip().lower()
        if not normalised or normalised not in self.plans:
            raise KeyError(code)
        return self.plans[normalised]

    def get_credit_package(self, code: str) -> CreditPackage:
        normalised = code.strip().lower()
        if not normalised or normalised not in self.credit_packages:
            raise KeyError(code)
        return self.credit_packages[normalised]


class SnippeSettings(BaseSettings):
    """Credentials and endpoints for the Snipe.sh mobile money provider."""

    model_config = SettingsConfigDict(
        env_prefix="SNIPPE__",
        extra="ignore",
        case_sensitive=False,
    )

    api_key: SecretStr | None = None
    webhook_secret: SecretStr | None = None
    base_url: str = "https://api.snippe.sh/v1"
    callback_url: str | None = None
    timeout_seconds: float = Field(default=15.0, gt=0, le=120)


class PrometheusSettings(BaseSettings):
    """Prometheus metrics configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PROMETHEUS__",
        extra="ignore",
        case_sensitive=False,
    )

    enabled: bool = True
    metrics_path: str = "/metrics"
    should_group_status_codes: bool = True
    should_ignore_untemplated: bool = True
    should_group_untemplated: bool = True
    should_respect_env_var: bool = False
    excluded_handlers: list[str] = Field(
        default_factory=lambda: ["/metrics", "/health", "/docs", "/redoc"]
    )


class SentrySettings(BaseSettings):
    """Sentry error tracking configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SENTRY__",
        extra="ignore",
        case_sensitive=False,
    )

    enabled: bool = False
    dsn: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "SENTRY_DSN",
            "sentry__dsn",
        ),
    )
    environment: str | None = None
    release: str | None = None
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    traces_sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    send_default_pii: bool = False


_ANY_URL_ADAPTER = TypeAdapter(AnyUrl)


def _default_backend_base_url() -> AnyUrl:
    return _ANY_URL_ADAPTER.validate_python("http://localhost:8000")


class Settings(BaseSettings):
    """Application settings loaded from the environment or secret stores."""

    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_nested_delimiter="__",
        secrets_dir=SECRETS_DIR,
        extra="ignore",
        validate_default=True,
        case_sensitive=False,
    )

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: str = "INFO"

    project_name: str = "Mobile Money Billing"
    project_description: str = (
        "Credit and subscription payments over Tanzanian mobile money"
    )
    project_version: str = "0.1.0"
    docs_url: str | None = "/docs"
    redoc_url: str | None = "/redoc"
    openapi_url: str = "/openapi.json"

    cors_allow_origins: list[str] = Field(default_factory=list)

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    payments: PaymentsSettings = Field(default_factory=PaymentsSettings)
    snippe: SnippeSettings = Field(default_factory=SnippeSettings)
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)
    sentry: SentrySettings = Field(default_factory=SentrySettings)

    backend_base_url: AnyUrl = Field(
        default_factory=_default_backend_base_url,
        validation_alias=AliasChoices(
            "BACKEND__BASE_URL",
            "backend__base_url",
            "BACKEND_BASE_URL",
        ),
    )
    snippe_webhook_path: str = "/api/v1/webhooks/snippe"

    @model_validator(mode="after")
    def _normalize(self) -> Settings:
        self.log_level = self.log_level.upper()

        if self.environment in {Environment.DEVELOPMENT, Environment.TEST}:
            self.debug = True

        return self

    @computed_field
    @property
    def is_development(self) -> bool:
        return self.environment is Environment.DEVELOPMENT

    @computed_field
    @property
    def is_testing(self) -> bool:
        return self.environment is Environment.TEST

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION

    @property
    def snippe_callback_url(self) -> str:
        """Webhook URL handed to the provider when a charge is initiated."""

        if self.snippe.callback_url:
            return self.snippe.callback_url
        base = str(self.backend_base_url).rstrip("/")
        return f"{base}{self.snippe_webhook_path}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached instance of the application settings."""

    return Settings()

