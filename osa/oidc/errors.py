"""OAuth2 error responses (RFC 6749 section 5.2)."""

from starlette.responses import JSONResponse

INVALID_REQUEST = "invalid_request"
INVALID_CLIENT = "invalid_client"
UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
SERVER_ERROR = "server_error"


def oauth_error(status_code: int, error: str, description: str = "") -> JSONResponse:
    """Build an ``{error, error_description}`` body; empty description omitted."""
    body = {"error": error}
    if description:
        body["error_description"] = description
    return JSONResponse(body, status_code=status_code)
