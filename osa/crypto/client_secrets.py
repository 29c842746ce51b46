"""OAuth2 client secret generation, hashing, and verification (Argon2id)."""

import secrets
import string

import argon2

CLIENT_SECRET_LENGTH = 32

_ALPHABET = string.ascii_letters + string.digits

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,
    parallelism=1,
)


def generate_client_secret(length: int = CLIENT_SECRET_LENGTH) -> str:
    """Generate a random alphanumeric client secret."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def hash_secret(secret: str) -> str:
    """Hash a client secret for storage."""
    return _hasher.hash(secret)


def verify_secret(plain: str, hashed: str) -> bool:
    """Check a presented secret against its stored hash in constant time."""
    try:
        return _hasher.verify(hashed, plain)
    except (argon2.exceptions.VerificationError, argon2.exceptions.InvalidHashError):
        return False
