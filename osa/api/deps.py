"""FastAPI dependencies shared by the token service routes."""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from osa.core.settings import IssuerSettings
from osa.issuer.token_issuer import TokenIssuer

_security = HTTPBearer()


def get_issuer(request: Request) -> TokenIssuer:
    """The process-wide issuer built at startup and held on app state."""
    return request.app.state.issuer


def get_settings(request: Request) -> IssuerSettings:
    return request.app.state.settings


async def require_admin_token(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_security)],
    settings: Annotated[IssuerSettings, Depends(get_settings)],
) -> str:
    """Verify the IDP_ADMIN_TOKEN Bearer token for operator endpoints."""
    expected = settings.admin_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if not hmac.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    return credentials.credentials
