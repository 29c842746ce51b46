"""Application settings loaded from environment variables."""

from typing import TypeVar

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from osa.core.errors import ConfigError

TOKEN_EXPIRY_DEFAULT = 3600
DB_POOL_SIZE_DEFAULT = 5
DB_MAX_OVERFLOW_DEFAULT = 10
DB_PORT_DEFAULT = 5432
SERVER_PORT_DEFAULT = 8081
JWKS_WELL_KNOWN_PATH = "/.well-known/jwks.json"


class IssuerSettings(BaseSettings):
    """Token service (issuer side) settings."""

    model_config = SettingsConfigDict(
        env_prefix="IDP_", env_file=".env", extra="ignore"
    )

    keys_dir: str = ""
    private_key_path: str = "private_key.pem"
    public_key_path: str = "public_key.pem"
    active_key_id: str = "superapp-key-1"
    token_expiry_seconds: int = TOKEN_EXPIRY_DEFAULT
    issuer: str = "superapp"
    service_audience: str = "superapp-api"
    admin_token: str = ""
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = SERVER_PORT_DEFAULT


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings for the OAuth2 client registry."""

    model_config = SettingsConfigDict(
        env_prefix="IDP_DB_", env_file=".env", extra="ignore"
    )

    host: str = "localhost"
    port: int = DB_PORT_DEFAULT
    user: str = "superapp"
    password: str = "superapp"
    database: str = "superapp"
    pool_size: int = DB_POOL_SIZE_DEFAULT
    max_overflow: int = DB_MAX_OVERFLOW_DEFAULT

    @property
    def async_url(self) -> str:
        """Build async PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class IdPSettings(BaseSettings):
    """Trust settings shared by both upstream identity providers."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    issuer: str
    audience: str


class ExternalIdPSettings(IdPSettings):
    """End-user identity provider; publishes its JWKS at an arbitrary URL."""

    model_config = SettingsConfigDict(
        env_prefix="EXTERNAL_IDP_", env_file=".env", extra="ignore"
    )

    jwks_url: str


class InternalIdPSettings(IdPSettings):
    """The in-house token service that signs backend service tokens."""

    model_config = SettingsConfigDict(
        env_prefix="INTERNAL_IDP_", env_file=".env", extra="ignore"
    )

    base_url: str

    @property
    def jwks_url(self) -> str:
        return self.base_url.rstrip("/") + JWKS_WELL_KNOWN_PATH


_IdPT = TypeVar("_IdPT", bound=IdPSettings)


def load_idp_settings(settings_cls: type[_IdPT]) -> _IdPT:
    """Load IdP settings, turning missing required values into ConfigError."""
    try:
        return settings_cls()
    except ValidationError as exc:
        missing = ", ".join(
            str(err["loc"][0]).upper() for err in exc.errors() if err["loc"]
        )
        raise ConfigError(
            f"Missing or invalid identity provider settings: {missing}"
        ) from exc
