"""Error taxonomy for key loading, issuance, and token validation."""


class TrustError(Exception):
    """Base class for all JWT trust infrastructure errors."""


class ConfigError(TrustError):
    """Fatal startup misconfiguration, e.g. an undefined active key."""


class LoadError(TrustError):
    """Key directory unreadable or no usable private key found."""


class ParseError(TrustError):
    """A JWKS document is not valid JSON or lacks a ``keys`` array."""


class UnknownKeyError(TrustError):
    """Rotation requested to a kid that is not loaded."""


class ReloadError(TrustError):
    """Key reload failed; the previous key set is still in use."""


class NotAvailableError(TrustError):
    """No JWKS document has been loaded or fetched."""


class JWKSFetchError(TrustError):
    """Fetching a remote JWKS failed (network, status, or size cap)."""


class TokenValidationError(TrustError):
    """A presented token was rejected. Always recoverable per request."""


class MalformedTokenError(TokenValidationError):
    """Token cannot be parsed, uses a non-RSA algorithm, or lacks a kid."""


class KeyNotFoundError(TokenValidationError):
    """No public key for the token's kid, even after a permitted refresh."""


class InvalidSignatureError(TokenValidationError):
    """Signature does not verify against the key named by the kid."""


class ClaimValidationError(TokenValidationError):
    """exp, nbf, iss, or aud check failed."""
