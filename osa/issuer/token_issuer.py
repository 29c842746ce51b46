"""RS256 token issuance with live key rotation and directory reload."""

import threading
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import jwt

from osa.core.errors import (
    ConfigError,
    LoadError,
    NotAvailableError,
    ReloadError,
    UnknownKeyError,
)
from osa.core.logging import get_logger
from osa.core.settings import TOKEN_EXPIRY_DEFAULT, IssuerSettings
from osa.crypto.keys import DEFAULT_KEY_ID, load_directory, load_single
from osa.crypto.types import KeySet

DEFAULT_ISSUER = "superapp"
SERVICE_AUDIENCE = "superapp-api"
SIGNING_ALGORITHM = "RS256"

_REGISTERED_CLAIMS = frozenset({"iss", "sub", "aud", "iat", "nbf", "exp"})

logger = get_logger(__name__)


class TokenIssuer:
    """Signs access tokens with the active key of an immutable key set.

    Readers (``issue``, ``get_jwks``) take one reference to the current
    ``KeySet`` and never lock. ``set_active_key`` and ``reload_keys`` build a
    replacement snapshot and swap it under ``_lock``, so rotations and reloads
    are serialized and never visible half-applied.
    """

    def __init__(
        self,
        key_set: KeySet,
        *,
        issuer: str = DEFAULT_ISSUER,
        expiry_seconds: int = TOKEN_EXPIRY_DEFAULT,
        keys_dir: str | Path | None = None,
        service_audience: str = SERVICE_AUDIENCE,
    ) -> None:
        if key_set.active_kid not in key_set.pairs:
            raise ConfigError(
                f"Active key {key_set.active_kid} not found in loaded keys"
            )
        self._key_set = key_set
        self._lock = threading.Lock()
        self._issuer = issuer
        self._expiry = timedelta(seconds=expiry_seconds)
        self._keys_dir = Path(keys_dir) if keys_dir else None
        self._service_audience = service_audience

    @classmethod
    def from_directory(
        cls, keys_dir: str | Path, active_kid: str = DEFAULT_KEY_ID, **kwargs: Any
    ) -> "TokenIssuer":
        """Load all key pairs from ``keys_dir``; reload is enabled."""
        try:
            key_set = load_directory(keys_dir, active_kid)
        except LoadError as exc:
            raise ConfigError(str(exc)) from exc
        issuer = cls(key_set, keys_dir=keys_dir, **kwargs)
        logger.info(
            "Token issuer initialized from directory",
            keys_loaded=len(key_set.pairs),
            active_key=active_kid,
        )
        return issuer

    @classmethod
    def from_single(
        cls,
        private_path: str | Path,
        public_path: str | Path | None = None,
        kid: str = DEFAULT_KEY_ID,
        **kwargs: Any,
    ) -> "TokenIssuer":
        """Load one key pair from explicit paths; reload is not available."""
        try:
            key_set = load_single(private_path, public_path, kid)
        except LoadError as exc:
            raise ConfigError(str(exc)) from exc
        logger.info("Token issuer initialized in single-key mode", key_id=kid)
        return cls(key_set, **kwargs)

    @classmethod
    def from_settings(cls, settings: IssuerSettings) -> "TokenIssuer":
        """Choose directory mode when a keys directory is configured."""
        common = {
            "issuer": settings.issuer,
            "expiry_seconds": settings.token_expiry_seconds,
            "service_audience": settings.service_audience,
        }
        if settings.keys_dir:
            return cls.from_directory(
                settings.keys_dir, settings.active_key_id, **common
            )
        return cls.from_single(
            settings.private_key_path,
            settings.public_key_path or None,
            settings.active_key_id,
            **common,
        )

    @property
    def active_key_id(self) -> str:
        return self._key_set.active_kid

    @property
    def key_ids(self) -> list[str]:
        return sorted(self._key_set.pairs)

    @property
    def expiry_seconds(self) -> int:
        return int(self._expiry.total_seconds())

    def issue(
        self,
        subject: str,
        audience: str,
        extra_claims: Mapping[str, Any] | None = None,
    ) -> str:
        """Sign a token for ``subject`` with the current active key."""
        key_set = self._key_set
        pair = key_set.pairs[key_set.active_kid]
        now = datetime.now(UTC)
        payload: dict[str, Any] = {
            key: value
            for key, value in (extra_claims or {}).items()
            if key not in _REGISTERED_CLAIMS
        }
        payload.update(
            {
                "iss": self._issuer,
                "sub": subject,
                "aud": [audience],
                "exp": now + self._expiry,
                "iat": now,
                "nbf": now,
            }
        )
        return jwt.encode(
            payload,
            pair.private_key,
            algorithm=SIGNING_ALGORITHM,
            headers={"kid": pair.kid},
        )

    def issue_service_token(self, client_id: str, scope: str) -> str:
        """Client-credentials token representing a backend service."""
        return self.issue(client_id, self._service_audience, {"scope": scope})

    def issue_user_token(
        self, user_email: str, microapp_id: str, scope: str = ""
    ) -> str:
        """User-context token scoped to one target micro-app."""
        claims: dict[str, Any] = {"microapp_id": microapp_id}
        if scope:
            claims["scope"] = scope
        return self.issue(user_email, microapp_id, claims)

    def set_active_key(self, kid: str) -> None:
        """Switch signing to ``kid``; the previous key stays verifiable.

        Raises:
            UnknownKeyError: ``kid`` is not in the current key set.
        """
        with self._lock:
            if kid not in self._key_set.pairs:
                raise UnknownKeyError(f"Key {kid} not found in private keys")
            self._key_set = self._key_set.model_copy(update={"active_kid": kid})
        logger.info("Active signing key updated", key_id=kid)

    def reload_keys(self) -> None:
        """Re-scan the keys directory and swap in the new key set.

        The active kid must still exist in the new set. On any failure the
        old key set remains in use.

        Raises:
            ReloadError: No directory configured, nothing loadable, or the
                active key disappeared.
        """
        if self._keys_dir is None:
            raise ReloadError("Keys directory not configured")

        with self._lock:
            active_kid = self._key_set.active_kid
            logger.info("Reloading keys from directory", dir=str(self._keys_dir))
            try:
                new_set = load_directory(self._keys_dir, active_kid)
            except LoadError as exc:
                raise ReloadError(f"Failed to load keys: {exc}") from exc
            if active_kid not in new_set.pairs:
                raise ReloadError(f"Active key {active_kid} not found in new keys")
            self._key_set = new_set

        logger.info("Keys reloaded successfully", keys_loaded=len(new_set.pairs))

    def get_jwks(self) -> bytes:
        """Return the pre-serialized JWKS of every key with a public half.

        Raises:
            NotAvailableError: Every loaded key is signing-only.
        """
        jwks = self._key_set.jwks
        if not jwks:
            raise NotAvailableError("JWKS not available")
        return jwks
