"""OAuth2 token endpoints: client-credentials and user-context grants."""

from typing import Annotated

import jwt
from fastapi import APIRouter, Depends, Form, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import JSONResponse

from osa.api.deps import get_issuer, require_admin_token
from osa.core.logging import get_logger
from osa.crypto.client_secrets import verify_secret
from osa.crypto.types import TokenResponse
from osa.db.engine import get_session
from osa.db.repo_clients import client_exists, create_client, get_active_client
from osa.issuer.token_issuer import TokenIssuer
from osa.oidc.errors import (
    INVALID_CLIENT,
    INVALID_REQUEST,
    SERVER_ERROR,
    UNSUPPORTED_GRANT_TYPE,
    oauth_error,
)

router = APIRouter()

GRANT_CLIENT_CREDENTIALS = "client_credentials"
GRANT_USER_CONTEXT = "user_context"

HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_CONFLICT = 409
HTTP_SERVER_ERROR = 500

_basic = HTTPBasic(auto_error=False)

logger = get_logger(__name__)


class _ClientCredentials(BaseModel):
    """Client-credentials request, from JSON, form fields, or Basic auth."""

    grant_type: str = ""
    client_id: str = ""
    client_secret: str = ""


class _UserTokenForm(BaseModel):
    """Form fields for the user-context grant."""

    grant_type: str = ""
    user_email: str = ""
    microapp_id: str = ""
    scope: str = ""


class _CreateClientRequest(BaseModel):
    client_id: str = ""
    name: str = ""
    scopes: str = ""


class CreateClientResponse(BaseModel):
    """Registered client; the plaintext secret is only ever returned here."""

    client_id: str
    client_secret: str
    name: str
    scopes: str
    is_active: bool


async def _read_credentials(
    request: Request, basic: HTTPBasicCredentials | None
) -> _ClientCredentials | None:
    """Parse the token request body; ``None`` when it is malformed."""
    if "application/json" in request.headers.get("content-type", ""):
        try:
            return _ClientCredentials.model_validate(await request.json())
        except (ValueError, ValidationError):
            return None

    form = await request.form()
    if basic is not None:
        client_id, client_secret = basic.username, basic.password
    else:
        client_id = str(form.get("client_id", ""))
        client_secret = str(form.get("client_secret", ""))
    return _ClientCredentials(
        grant_type=str(form.get("grant_type", "")),
        client_id=client_id,
        client_secret=client_secret,
    )


@router.post("/oauth/token", response_model=None)
async def token_endpoint(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_session)],
    issuer: Annotated[TokenIssuer, Depends(get_issuer)],
    basic: Annotated[HTTPBasicCredentials | None, Depends(_basic)],
) -> TokenResponse | JSONResponse:
    """POST /oauth/token -- client-credentials grant for backend services."""
    creds = await _read_credentials(request, basic)
    if creds is None:
        return oauth_error(HTTP_BAD_REQUEST, INVALID_REQUEST, "invalid request body")
    if creds.grant_type != GRANT_CLIENT_CREDENTIALS:
        return oauth_error(HTTP_BAD_REQUEST, UNSUPPORTED_GRANT_TYPE)
    if not creds.client_id or not creds.client_secret:
        return oauth_error(
            HTTP_BAD_REQUEST,
            INVALID_CLIENT,
            "client_id and client_secret are required",
        )

    client = await get_active_client(db, creds.client_id)
    if client is None:
        logger.warning("Client not found or inactive", client_id=creds.client_id)
        return oauth_error(HTTP_UNAUTHORIZED, INVALID_CLIENT)
    if not verify_secret(creds.client_secret, client.client_secret_hash):
        logger.warning("Invalid client secret", client_id=creds.client_id)
        return oauth_error(HTTP_UNAUTHORIZED, INVALID_CLIENT)

    try:
        token = issuer.issue_service_token(client.client_id, client.scopes)
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
        logger.error("Failed to issue token", error=str(exc))
        return oauth_error(HTTP_SERVER_ERROR, SERVER_ERROR)

    return TokenResponse(access_token=token, expires_in=issuer.expiry_seconds)


@router.post("/oauth/token/user", response_model=None)
async def user_token_endpoint(
    issuer: Annotated[TokenIssuer, Depends(get_issuer)],
    form: Annotated[_UserTokenForm, Form()],
) -> TokenResponse | JSONResponse:
    """POST /oauth/token/user -- mint a user-context token for a micro-app."""
    if form.grant_type != GRANT_USER_CONTEXT:
        return oauth_error(HTTP_BAD_REQUEST, UNSUPPORTED_GRANT_TYPE)
    if not form.user_email or not form.microapp_id:
        return oauth_error(
            HTTP_BAD_REQUEST,
            INVALID_REQUEST,
            "user_email and microapp_id are required",
        )

    try:
        token = issuer.issue_user_token(form.user_email, form.microapp_id, form.scope)
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
        logger.error(
            "Failed to generate user token", error=str(exc), microapp=form.microapp_id
        )
        return oauth_error(HTTP_SERVER_ERROR, SERVER_ERROR)

    logger.info("User token generated", microapp=form.microapp_id)
    return TokenResponse(access_token=token, expires_in=issuer.expiry_seconds)


@router.post("/oauth/clients", response_model=None, status_code=201)
async def create_client_endpoint(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_session)],
    _admin: Annotated[str, Depends(require_admin_token)],
) -> CreateClientResponse | JSONResponse:
    """POST /oauth/clients -- register a client-credentials client."""
    try:
        body = _CreateClientRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        return oauth_error(HTTP_BAD_REQUEST, INVALID_REQUEST, "invalid request body")
    if not body.client_id:
        return oauth_error(HTTP_BAD_REQUEST, INVALID_REQUEST, "client_id is required")
    if not body.name:
        return oauth_error(HTTP_BAD_REQUEST, INVALID_REQUEST, "name is required")
    if await client_exists(db, body.client_id):
        return oauth_error(HTTP_CONFLICT, INVALID_REQUEST, "client_id already exists")

    entity, secret = await create_client(
        db, client_id=body.client_id, name=body.name, scopes=body.scopes
    )
    logger.info("OAuth2 client created", client_id=entity.client_id, name=entity.name)
    return CreateClientResponse(
        client_id=entity.client_id,
        client_secret=secret,
        name=entity.name,
        scopes=entity.scopes,
        is_active=entity.is_active,
    )
