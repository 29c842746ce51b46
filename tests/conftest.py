"""Shared test fixtures: RSA key files, fake JWKS endpoints, app clients."""

import threading
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from osa.core.app import create_app
from osa.core.settings import IssuerSettings
from osa.db.engine import create_schema, get_session
from osa.issuer.token_issuer import TokenIssuer
from osa.validator.token_validator import TokenValidator

ISSUER = "superapp"
ADMIN_TOKEN = "test-admin-token"
JWKS_URL = "http://idp.test/.well-known/jwks.json"

WritePair = Callable[..., None]


class FakeJWKSEndpoint:
    """httpx.MockTransport handler serving a mutable JWKS body."""

    def __init__(self, body: bytes, status_code: int = 200) -> None:
        self.body = body
        self.status_code = status_code
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.calls += 1
        return httpx.Response(self.status_code, content=self.body)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture(scope="session")
def rsa_keys() -> dict[str, RSAPrivateKey]:
    """A few RSA-2048 keys, generated once per session."""
    return {
        name: rsa.generate_private_key(public_exponent=65537, key_size=2048)
        for name in ("k1", "k2", "k3")
    }


@pytest.fixture
def write_pair(rsa_keys: dict[str, RSAPrivateKey]) -> WritePair:
    """Write ``<kid>_private.pem`` (and optionally the public half)."""

    def _write(
        directory: Path,
        kid: str,
        *,
        key_name: str | None = None,
        public: bool = True,
        pkcs1: bool = False,
    ) -> None:
        key = rsa_keys[key_name or kid]
        private_format = (
            serialization.PrivateFormat.TraditionalOpenSSL
            if pkcs1
            else serialization.PrivateFormat.PKCS8
        )
        (directory / f"{kid}_private.pem").write_bytes(
            key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=private_format,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        if public:
            (directory / f"{kid}_public.pem").write_bytes(
                key.public_key().public_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PublicFormat.SubjectPublicKeyInfo,
                )
            )

    return _write


@pytest.fixture
def keys_dir(tmp_path: Path, write_pair: WritePair) -> Path:
    """Directory holding complete pairs for k1 and k2."""
    directory = tmp_path / "keys"
    directory.mkdir()
    write_pair(directory, "k1")
    write_pair(directory, "k2")
    return directory


@pytest.fixture
def issuer(keys_dir: Path) -> TokenIssuer:
    return TokenIssuer.from_directory(keys_dir, "k1", issuer=ISSUER)


@pytest.fixture
def jwks_endpoint(issuer: TokenIssuer) -> FakeJWKSEndpoint:
    """Remote JWKS endpoint publishing the issuer's current keys."""
    return FakeJWKSEndpoint(issuer.get_jwks())


@pytest.fixture
def validator(jwks_endpoint: FakeJWKSEndpoint) -> Iterator[TokenValidator]:
    tv = TokenValidator(
        JWKS_URL,
        issuer=ISSUER,
        http_client=jwks_endpoint.client(),
        start_background=False,
    )
    yield tv
    tv.close()


@pytest.fixture(autouse=True)
def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's .env and IDP_* variables out of the tests."""
    monkeypatch.chdir(Path(__file__).parent)
    monkeypatch.setenv("IDP_ADMIN_TOKEN", ADMIN_TOKEN)


@pytest.fixture
async def db_session() -> AsyncIterator[AsyncSession]:
    """Create an in-memory SQLite async session for tests."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    await create_schema(engine)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
async def client(
    db_session: AsyncSession, issuer: TokenIssuer
) -> AsyncIterator[AsyncClient]:
    """httpx client for the token service with DB session override."""
    app = create_app(issuer=issuer, settings=IssuerSettings())

    async def _override_session() -> AsyncIterator[AsyncSession]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
