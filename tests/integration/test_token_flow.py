"""End-to-end flows: the token service issues, a resource server validates."""

from collections.abc import Iterator
from pathlib import Path

import jwt
import pytest
from conftest import ADMIN_TOKEN, ISSUER, FakeJWKSEndpoint, WritePair
from fastapi.testclient import TestClient
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from osa.core.app import create_app
from osa.core.errors import KeyNotFoundError
from osa.core.settings import IssuerSettings
from osa.db.repo_clients import create_client
from osa.issuer.token_issuer import TokenIssuer
from osa.validator.token_validator import TokenValidator

ADMIN_HEADERS = {"Authorization": f"Bearer {ADMIN_TOKEN}"}
SERVICE_JWKS_URL = "http://testserver/.well-known/jwks.json"


@pytest.fixture
def token_service(issuer: TokenIssuer) -> TestClient:
    """Token service app; the lifespan (and its database) is not started."""
    return TestClient(create_app(issuer=issuer, settings=IssuerSettings()))


@pytest.fixture
def remote_validator(token_service: TestClient) -> Iterator[TokenValidator]:
    """Validator fetching JWKS from the token service over HTTP."""
    tv = TokenValidator(
        SERVICE_JWKS_URL,
        issuer=ISSUER,
        http_client=token_service,
        start_background=False,
        refresh_cooldown=0,
    )
    yield tv
    tv.close()


def test_user_context_flow(
    token_service: TestClient, remote_validator: TokenValidator
) -> None:
    resp = token_service.post(
        "/oauth/token/user",
        data={
            "grant_type": "user_context",
            "user_email": "test@example.com",
            "microapp_id": "test-microapp",
            "scope": "read write",
        },
    )
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    claims = remote_validator.validate_token(token)
    assert claims.sub == "test@example.com"
    assert claims.iss == ISSUER
    assert claims.aud == ["test-microapp"]
    assert claims.microapp_id == "test-microapp"
    assert claims.scope == "read write"


def test_rotation_flow(
    token_service: TestClient,
    remote_validator: TokenValidator,
    issuer: TokenIssuer,
) -> None:
    before = issuer.issue("svc", "superapp-api")
    resp = token_service.post(
        "/admin/active-key", params={"key_id": "k2"}, headers=ADMIN_HEADERS
    )
    assert resp.status_code == 200
    after = issuer.issue("svc", "superapp-api")

    assert jwt.get_unverified_header(after)["kid"] == "k2"
    assert remote_validator.validate_token(before).sub == "svc"
    assert remote_validator.validate_token(after).sub == "svc"


def test_reload_flow_reaches_validator_lazily(
    token_service: TestClient,
    remote_validator: TokenValidator,
    issuer: TokenIssuer,
    keys_dir: Path,
    write_pair: WritePair,
) -> None:
    write_pair(keys_dir, "k3")
    resp = token_service.post("/admin/reload-keys", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    resp = token_service.post(
        "/admin/active-key", params={"key_id": "k3"}, headers=ADMIN_HEADERS
    )
    assert resp.status_code == 200

    assert remote_validator.key_ids == ["k1", "k2"]
    token = issuer.issue_service_token("svc", "read")
    assert remote_validator.validate_token(token).sub == "svc"
    assert remote_validator.key_ids == ["k1", "k2", "k3"]


def test_retired_key_rejected_after_refresh(
    token_service: TestClient,
    remote_validator: TokenValidator,
    issuer: TokenIssuer,
    keys_dir: Path,
) -> None:
    old = issuer.issue("svc", "superapp-api")
    token_service.post(
        "/admin/active-key", params={"key_id": "k2"}, headers=ADMIN_HEADERS
    )
    (keys_dir / "k1_private.pem").unlink()
    (keys_dir / "k1_public.pem").unlink()
    resp = token_service.post("/admin/reload-keys", headers=ADMIN_HEADERS)
    assert resp.status_code == 200

    remote_validator.refresh()
    with pytest.raises(KeyNotFoundError):
        remote_validator.validate_token(old)


async def test_client_credentials_flow(
    client: AsyncClient, db_session: AsyncSession
) -> None:
    _, secret = await create_client(
        db_session, client_id="orders-svc", name="Orders", scopes="orders:read"
    )
    await db_session.commit()

    resp = await client.post(
        "/oauth/token",
        data={
            "grant_type": "client_credentials",
            "client_id": "orders-svc",
            "client_secret": secret,
        },
    )
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    jwks = await client.get("/.well-known/jwks.json")
    endpoint = FakeJWKSEndpoint(jwks.content)
    with TokenValidator(
        SERVICE_JWKS_URL,
        ISSUER,
        "superapp-api",
        http_client=endpoint.client(),
        start_background=False,
    ) as tv:
        claims = tv.validate_token(token)
    assert claims.sub == "orders-svc"
    assert claims.aud == ["superapp-api"]
    assert claims.scope == "orders:read"
