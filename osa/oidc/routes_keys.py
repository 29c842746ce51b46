"""JWKS publication and operator key-management endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response
from starlette.responses import JSONResponse

from osa.api.deps import get_issuer, require_admin_token
from osa.core.errors import NotAvailableError, ReloadError, UnknownKeyError
from osa.issuer.token_issuer import TokenIssuer

router = APIRouter()

JWKS_CACHE_CONTROL = "public, max-age=300"

HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_SERVER_ERROR = 500


@router.get("/.well-known/jwks.json", response_model=None)
async def jwks(
    issuer: Annotated[TokenIssuer, Depends(get_issuer)],
) -> Response:
    """JSON Web Key Set of every loaded public key, served verbatim."""
    try:
        body = issuer.get_jwks()
    except NotAvailableError:
        return JSONResponse(
            {"message": "Public key not available"}, status_code=HTTP_NOT_FOUND
        )
    return Response(
        content=body,
        media_type="application/json",
        headers={"Cache-Control": JWKS_CACHE_CONTROL},
    )


@router.post("/admin/reload-keys", response_model=None)
def reload_keys(
    issuer: Annotated[TokenIssuer, Depends(get_issuer)],
    _admin: Annotated[str, Depends(require_admin_token)],
) -> JSONResponse:
    """Re-scan the keys directory without restarting."""
    try:
        issuer.reload_keys()
    except ReloadError as exc:
        return JSONResponse(
            {"message": f"Failed to reload keys: {exc}"},
            status_code=HTTP_SERVER_ERROR,
        )
    return JSONResponse({"message": "Keys reloaded successfully"})


@router.post("/admin/active-key", response_model=None)
async def set_active_key(
    issuer: Annotated[TokenIssuer, Depends(get_issuer)],
    _admin: Annotated[str, Depends(require_admin_token)],
    key_id: Annotated[str, Query()] = "",
) -> JSONResponse:
    """Rotate signing to an already-loaded key."""
    if not key_id:
        return JSONResponse(
            {"message": "key_id parameter is required"},
            status_code=HTTP_BAD_REQUEST,
        )
    try:
        issuer.set_active_key(key_id)
    except UnknownKeyError as exc:
        return JSONResponse(
            {"message": f"Failed to set active key: {exc}"},
            status_code=HTTP_BAD_REQUEST,
        )
    return JSONResponse(
        {"message": "Active key updated successfully", "active_key": key_id}
    )
