"""Bearer authentication for resource servers backed by a TokenValidator.

Two identities are supported: end users, whose tokens come from the external
IdP and carry ``email``/``groups``; and backend services, whose
client-credentials tokens come from the internal token service and carry the
client id as ``sub``. Any validation failure is answered with a bare 401.
"""

from typing import Any, TypeVar

from fastapi import HTTPException, Request, status
from pydantic import BaseModel

from osa.core.errors import TokenValidationError
from osa.core.logging import get_logger
from osa.core.settings import (
    ExternalIdPSettings,
    IdPSettings,
    InternalIdPSettings,
    load_idp_settings,
)
from osa.crypto.types import ValidatedClaims
from osa.validator.token_validator import TokenValidator

BEARER_SCHEME = "bearer"

logger = get_logger(__name__)


class UserInfo(BaseModel):
    """Authenticated end user."""

    email: str
    groups: list[str] = []


class ServiceInfo(BaseModel):
    """Authenticated backend service client."""

    client_id: str


def extract_bearer(header_value: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer`` header, if any."""
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != BEARER_SCHEME:
        return None
    return token.strip() or None


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


_AuthT = TypeVar("_AuthT", bound="_BearerAuthenticator")


class _BearerAuthenticator:
    """Callable dependency; sync so FastAPI runs lazy JWKS refreshes off-loop."""

    settings_cls: type[IdPSettings]

    def __init__(self, validator: TokenValidator) -> None:
        self._validator = validator

    @classmethod
    def from_env(cls: type[_AuthT], **validator_kwargs: Any) -> _AuthT:
        """Build a validator for this identity's IdP from the environment.

        The caller owns the validator and closes it through ``validator``.

        Raises:
            ConfigError: Required IdP settings are missing.
            JWKSFetchError: The initial JWKS fetch failed.
            ParseError: The initial JWKS document is invalid.
        """
        settings = load_idp_settings(cls.settings_cls)
        return cls(TokenValidator.from_settings(settings, **validator_kwargs))

    @property
    def validator(self) -> TokenValidator:
        return self._validator

    def _validate(self, request: Request) -> ValidatedClaims:
        token = extract_bearer(request.headers.get("Authorization"))
        if token is None:
            logger.warning(
                "Missing or invalid Authorization header",
                path=request.url.path,
                method=request.method,
            )
            raise _unauthorized("Missing or invalid Authorization header")
        try:
            return self._validator.validate_token(token)
        except TokenValidationError as exc:
            logger.warning(
                "Token validation failed",
                error=str(exc),
                path=request.url.path,
                method=request.method,
            )
            raise _unauthorized("Invalid or expired token") from exc


class UserAuthenticator(_BearerAuthenticator):
    settings_cls = ExternalIdPSettings

    def __call__(self, request: Request) -> UserInfo:
        claims = self._validate(request)
        user = UserInfo(email=claims.email, groups=claims.groups)
        request.state.user_info = user
        return user


class ServiceAuthenticator(_BearerAuthenticator):
    settings_cls = InternalIdPSettings

    def __call__(self, request: Request) -> ServiceInfo:
        claims = self._validate(request)
        service = ServiceInfo(client_id=claims.sub)
        request.state.service_info = service
        return service
