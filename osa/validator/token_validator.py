"""Bearer token verification against a cached remote JWKS."""

import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from types import TracebackType
from typing import Any

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from jwt.types import Options
from pydantic import ValidationError

from osa.core.errors import (
    ClaimValidationError,
    InvalidSignatureError,
    JWKSFetchError,
    KeyNotFoundError,
    MalformedTokenError,
    NotAvailableError,
    ParseError,
)
from osa.core.logging import get_logger
from osa.core.settings import JWKS_WELL_KNOWN_PATH, IdPSettings
from osa.crypto.jwks import decode_jwks
from osa.crypto.types import RemoteKeyCache, ValidatedClaims

DEFAULT_HTTP_TIMEOUT = 10.0
JWKS_REFRESH_INTERVAL = 3600.0
JWKS_LAZY_REFRESH_COOLDOWN = 10.0
MAX_JWKS_RESPONSE_BYTES = 1 << 20

RSA_ALGORITHMS = ("RS256", "RS384", "RS512")

_CLAIM_ERRORS = (
    jwt.ExpiredSignatureError,
    jwt.ImmatureSignatureError,
    jwt.InvalidIssuedAtError,
    jwt.InvalidIssuerError,
    jwt.InvalidAudienceError,
    jwt.MissingRequiredClaimError,
)

logger = get_logger(__name__)


class TokenValidator:
    """Verifies RSA-signed JWTs using keys published by one identity provider.

    The first JWKS fetch happens in the constructor and must succeed. After
    that a daemon thread re-fetches every ``refresh_interval`` seconds, and a
    token naming an unknown kid triggers at most one synchronous refresh per
    ``refresh_cooldown`` window. Failed fetches never discard the cached keys.
    """

    def __init__(
        self,
        jwks_url: str,
        issuer: str = "",
        audience: str = "",
        *,
        refresh_interval: float = JWKS_REFRESH_INTERVAL,
        refresh_cooldown: float = JWKS_LAZY_REFRESH_COOLDOWN,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        max_response_bytes: int = MAX_JWKS_RESPONSE_BYTES,
        http_client: httpx.Client | None = None,
        start_background: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jwks_url = jwks_url
        self._issuer = issuer
        self._audience = audience
        self._refresh_interval = refresh_interval
        self._refresh_cooldown = refresh_cooldown
        self._timeout = timeout
        self._max_response_bytes = max_response_bytes
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)
        self._clock = clock

        self._lock = threading.Lock()
        self._cache: RemoteKeyCache | None = None
        self._last_refresh_attempt: float | None = None
        self._fetch_seq = 0
        self._applied_seq = 0
        self._done = threading.Event()
        self._closed = False
        self._thread: threading.Thread | None = None

        try:
            self.refresh()
        except (JWKSFetchError, ParseError):
            if self._owns_http:
                self._http.close()
            raise

        if start_background:
            self._thread = threading.Thread(
                target=self._background_refresh,
                name="jwks-refresh",
                daemon=True,
            )
            self._thread.start()

    @classmethod
    def from_base_url(
        cls, idp_base_url: str, *args: Any, **kwargs: Any
    ) -> "TokenValidator":
        """Validator for an IdP publishing at ``/.well-known/jwks.json``."""
        jwks_url = idp_base_url.rstrip("/") + JWKS_WELL_KNOWN_PATH
        return cls(jwks_url, *args, **kwargs)

    @classmethod
    def from_settings(cls, settings: IdPSettings, **kwargs: Any) -> "TokenValidator":
        return cls(settings.jwks_url, settings.issuer, settings.audience, **kwargs)

    def __enter__(self) -> "TokenValidator":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def jwks_url(self) -> str:
        return self._jwks_url

    @property
    def key_ids(self) -> list[str]:
        cache = self._cache
        return sorted(cache.keys) if cache else []

    @property
    def fetched_at(self) -> datetime | None:
        cache = self._cache
        return cache.fetched_at if cache else None

    def validate_token(self, token: str) -> ValidatedClaims:
        """Verify signature, expiry, issuer, and audience of ``token``.

        Raises:
            MalformedTokenError: Unparseable token, non-RSA alg, or no kid.
            KeyNotFoundError: No key for the kid, refresh rate limited or
                unsuccessful.
            InvalidSignatureError: Signature does not verify.
            ClaimValidationError: exp, nbf, iss, or aud rejected.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as exc:
            raise MalformedTokenError(f"Invalid token header: {exc}") from exc

        alg = header.get("alg")
        if alg not in RSA_ALGORITHMS:
            raise MalformedTokenError(f"Unexpected signing method: {alg}")
        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise MalformedTokenError("kid not found in token header")

        key = self._get_key(kid)

        opts: Options = {}
        if not self._audience:
            opts["verify_aud"] = False
        try:
            raw = jwt.decode(
                token,
                key,
                algorithms=list(RSA_ALGORITHMS),
                issuer=self._issuer or None,
                audience=self._audience or None,
                options=opts,
            )
        except jwt.InvalidSignatureError as exc:
            raise InvalidSignatureError(str(exc)) from exc
        except _CLAIM_ERRORS as exc:
            raise ClaimValidationError(str(exc)) from exc
        except jwt.PyJWTError as exc:
            raise MalformedTokenError(str(exc)) from exc

        try:
            return ValidatedClaims.model_validate(raw)
        except ValidationError as exc:
            raise MalformedTokenError(f"Unexpected claim types: {exc}") from exc

    def get_jwks(self) -> bytes:
        """Return the last successfully fetched JWKS body verbatim.

        Raises:
            NotAvailableError: Nothing has been fetched yet.
        """
        cache = self._cache
        if cache is None or not cache.raw_jwks:
            raise NotAvailableError("No JWKS cached")
        return cache.raw_jwks

    def refresh(self) -> None:
        """Fetch the remote JWKS and replace the cache on success.

        When fetches overlap, a fetch started earlier never replaces the cache
        installed by one started later.

        Raises:
            JWKSFetchError: Network failure, non-200 status, or oversized body.
            ParseError: The body is not a JWKS document.
        """
        with self._lock:
            self._fetch_seq += 1
            seq = self._fetch_seq
        body = self._fetch()
        cache = RemoteKeyCache(
            keys=decode_jwks(body),
            fetched_at=datetime.now(UTC),
            raw_jwks=body,
        )
        with self._lock:
            if seq < self._applied_seq:
                logger.debug("Discarding stale JWKS fetch", url=self._jwks_url)
                return
            self._applied_seq = seq
            self._cache = cache
        logger.debug("JWKS refreshed", url=self._jwks_url, keys=len(cache.keys))

    def close(self) -> None:
        """Stop the background refresh loop. Must be called exactly once."""
        if self._closed:
            raise RuntimeError("TokenValidator already closed")
        self._closed = True
        self._done.set()
        if self._thread is not None:
            self._thread.join()
        if self._owns_http:
            self._http.close()

    def _get_key(self, kid: str) -> RSAPublicKey:
        cache = self._cache
        if cache is not None and kid in cache.keys:
            return cache.keys[kid]

        with self._lock:
            cache = self._cache
            if cache is not None and kid in cache.keys:
                return cache.keys[kid]
            now = self._clock()
            if (
                self._last_refresh_attempt is not None
                and now - self._last_refresh_attempt < self._refresh_cooldown
            ):
                raise KeyNotFoundError(
                    f"Key with kid {kid} not found (refresh rate limited)"
                )
            # claim the window before I/O so concurrent misses do not also fetch
            self._last_refresh_attempt = now

        logger.info("Key not found, triggering JWKS refresh", kid=kid)
        try:
            self.refresh()
        except (JWKSFetchError, ParseError) as exc:
            logger.warning("Lazy JWKS refresh failed", kid=kid, error=str(exc))
            raise KeyNotFoundError(
                f"Key with kid {kid} not found (refresh failed)"
            ) from exc

        cache = self._cache
        if cache is not None and kid in cache.keys:
            return cache.keys[kid]
        raise KeyNotFoundError(f"Key with kid {kid} not found after refresh")

    def _fetch(self) -> bytes:
        try:
            with self._http.stream(
                "GET", self._jwks_url, timeout=self._timeout
            ) as response:
                if response.status_code != httpx.codes.OK:
                    raise JWKSFetchError(
                        f"JWKS endpoint returned status {response.status_code}"
                    )
                body = bytearray()
                for chunk in response.iter_bytes():
                    body.extend(chunk)
                    if len(body) > self._max_response_bytes:
                        raise JWKSFetchError(
                            f"JWKS response exceeds {self._max_response_bytes} bytes"
                        )
                return bytes(body)
        except httpx.HTTPError as exc:
            raise JWKSFetchError(f"Failed to fetch JWKS: {exc}") from exc

    def _background_refresh(self) -> None:
        while not self._done.wait(self._refresh_interval):
            try:
                self.refresh()
            except (JWKSFetchError, ParseError) as exc:
                logger.warning("Background JWKS refresh failed", error=str(exc))
            except Exception:
                logger.exception("Unexpected error in background JWKS refresh")
