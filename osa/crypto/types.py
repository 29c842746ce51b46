"""Type definitions for key sets, JWKS documents, and JWT claims."""

from datetime import datetime

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from pydantic import BaseModel, ConfigDict, field_validator


class KeyPair(BaseModel):
    """An RSA signing key and, when present, its verification counterpart.

    A pair without ``public_key`` can sign but is not published in JWKS.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kid: str
    private_key: RSAPrivateKey
    public_key: RSAPublicKey | None = None


class KeySet(BaseModel):
    """Immutable snapshot of loaded keys, the active kid, and their JWKS.

    Replaced wholesale on rotation or reload; the ``pairs`` mapping is never
    mutated after construction.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    pairs: dict[str, KeyPair]
    active_kid: str
    jwks: bytes | None = None

    def public_keys(self) -> dict[str, RSAPublicKey]:
        return {
            kid: pair.public_key
            for kid, pair in self.pairs.items()
            if pair.public_key is not None
        }


class JWKEntry(BaseModel):
    """Single JWK entry in a JWKS response."""

    kty: str = "RSA"
    use: str = "sig"
    kid: str
    n: str
    e: str
    alg: str = "RS256"


class JWKSDocument(BaseModel):
    """JSON Web Key Set response."""

    keys: list[JWKEntry]


class RemoteKeyCache(BaseModel):
    """Snapshot of the last successful remote JWKS fetch."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    keys: dict[str, RSAPublicKey]
    fetched_at: datetime
    raw_jwks: bytes


class ValidatedClaims(BaseModel):
    """Verified JWT claims handed to the caller."""

    model_config = ConfigDict(extra="allow")

    iss: str = ""
    sub: str = ""
    aud: list[str] = []
    exp: int | None = None
    iat: int | None = None
    nbf: int | None = None
    scope: str = ""
    email: str = ""
    groups: list[str] = []
    microapp_id: str = ""

    @field_validator("aud", mode="before")
    @classmethod
    def _aud_as_list(cls, value: object) -> object:
        if isinstance(value, str):
            return [value]
        return value


class TokenResponse(BaseModel):
    """OAuth token endpoint response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
