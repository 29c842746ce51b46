"""FastAPI application factory for the token service."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from osa.core.settings import IssuerSettings
from osa.db.engine import create_schema, dispose_engine
from osa.issuer.token_issuer import TokenIssuer
from osa.oidc.errors import INVALID_REQUEST, oauth_error
from osa.oidc.routes_keys import router as keys_router
from osa.oidc.routes_token import router as token_router

MAX_REQUEST_BODY_BYTES = 1 << 20
HTTP_PAYLOAD_TOO_LARGE = 413


class RequestBodyTooLarge(HTTPException):
    def __init__(self) -> None:
        super().__init__(HTTP_PAYLOAD_TOO_LARGE, "request body too large")


class RequestBodyLimit:
    """Reject request bodies over ``max_bytes``, declared or streamed.

    A declared Content-Length over the limit is answered before the app
    runs. Otherwise bytes are counted as the app receives them, so chunked
    uploads are cut off once they cross the limit.
    """

    def __init__(self, app: ASGIApp, max_bytes: int = MAX_REQUEST_BODY_BYTES) -> None:
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = dict(scope["headers"]).get(b"content-length", b"")
        if length.isdigit() and int(length) > self.max_bytes:
            response = oauth_error(
                HTTP_PAYLOAD_TOO_LARGE, INVALID_REQUEST, "request body too large"
            )
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise RequestBodyTooLarge()
            return message

        await self.app(scope, limited_receive, send)


async def _body_too_large(request: Request, exc: Exception) -> JSONResponse:
    return oauth_error(
        HTTP_PAYLOAD_TOO_LARGE, INVALID_REQUEST, "request body too large"
    )


def create_app(
    issuer: TokenIssuer | None = None,
    settings: IssuerSettings | None = None,
) -> FastAPI:
    """Build the app. Without an injected issuer one is loaded at startup."""
    settings = settings or IssuerSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if issuer is None:
            # fatal on bad key material: the process must not serve
            app.state.issuer = TokenIssuer.from_settings(settings)
        await create_schema()
        yield
        await dispose_engine()

    app = FastAPI(
        title="SuperApp Token Service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    if issuer is not None:
        app.state.issuer = issuer

    app.add_middleware(RequestBodyLimit)
    app.add_exception_handler(RequestBodyTooLarge, _body_too_large)

    app.include_router(token_router)
    app.include_router(keys_router)

    return app
