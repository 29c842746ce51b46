"""JWKS encoding and decoding for RSA public keys (RFC 7517/7518)."""

import base64
import binascii
import json
from collections.abc import Mapping

from cryptography.hazmat.primitives.asymmetric.rsa import (
    RSAPublicKey,
    RSAPublicNumbers,
)

from osa.core.errors import ParseError
from osa.core.logging import get_logger
from osa.crypto.types import JWKEntry, JWKSDocument

logger = get_logger(__name__)


def _int_to_base64url(value: int) -> str:
    """Encode an integer as base64url without padding."""
    byte_length = (value.bit_length() + 7) // 8
    raw = value.to_bytes(byte_length, byteorder="big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _base64url_to_int(value: str) -> int:
    """Decode an unpadded base64url string to a big-endian integer."""
    padded = value + "=" * (-len(value) % 4)
    raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    if not raw:
        raise ValueError("empty integer encoding")
    return int.from_bytes(raw, byteorder="big")


def public_key_to_jwk(kid: str, key: RSAPublicKey) -> JWKEntry:
    """Convert an RSA public key to JWK format."""
    numbers = key.public_numbers()
    return JWKEntry(
        kid=kid,
        n=_int_to_base64url(numbers.n),
        e=_int_to_base64url(numbers.e),
    )


def encode_jwks(public_keys: Mapping[str, RSAPublicKey]) -> bytes:
    """Serialize public keys as a JWKS document. Entry order is unspecified."""
    document = JWKSDocument(
        keys=[public_key_to_jwk(kid, key) for kid, key in public_keys.items()]
    )
    return document.model_dump_json().encode()


def decode_jwks(data: bytes) -> dict[str, RSAPublicKey]:
    """Parse a JWKS document into usable RSA public keys keyed by kid.

    Non-RSA entries are ignored; RSA entries that cannot be turned into a key
    are skipped with a warning.
    """
    try:
        document = json.loads(data)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ParseError(f"JWKS is not valid JSON: {exc}") from exc
    if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
        raise ParseError("JWKS document has no 'keys' array")

    keys: dict[str, RSAPublicKey] = {}
    for entry in document["keys"]:
        if not isinstance(entry, dict) or entry.get("kty") != "RSA":
            continue
        kid = entry.get("kid")
        if not isinstance(kid, str) or not kid:
            logger.warning("Skipping RSA JWK without kid")
            continue
        try:
            numbers = RSAPublicNumbers(
                e=_base64url_to_int(entry["e"]),
                n=_base64url_to_int(entry["n"]),
            )
            keys[kid] = numbers.public_key()
        except (KeyError, TypeError, ValueError, binascii.Error) as exc:
            logger.warning("Failed to parse key", key_id=kid, error=str(exc))
    return keys
