"""RSA key pair loading from PEM files into immutable key sets."""

import re
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from osa.core.errors import LoadError
from osa.core.logging import get_logger
from osa.crypto.jwks import encode_jwks
from osa.crypto.types import KeyPair, KeySet

DEFAULT_KEY_ID = "superapp-key-1"

_PRIVATE_KEY_FILE = re.compile(r"^(?P<kid>.+)_private\.(?P<ext>[A-Za-z0-9]+)$")

logger = get_logger(__name__)


def parse_private_key(data: bytes) -> RSAPrivateKey:
    """Parse a PKCS#1 or PKCS#8 PEM RSA private key."""
    try:
        loaded = serialization.load_pem_private_key(data, password=None)
    except UnsupportedAlgorithm as exc:
        raise ValueError(str(exc)) from exc
    if not isinstance(loaded, RSAPrivateKey):
        raise ValueError("not an RSA private key")
    return loaded


def parse_public_key(data: bytes) -> RSAPublicKey:
    """Parse a SubjectPublicKeyInfo or PKCS#1 PEM RSA public key."""
    try:
        loaded = serialization.load_pem_public_key(data)
    except UnsupportedAlgorithm as exc:
        raise ValueError(str(exc)) from exc
    if not isinstance(loaded, RSAPublicKey):
        raise ValueError("not an RSA public key")
    return loaded


def _load_public_key(path: Path, kid: str) -> RSAPublicKey | None:
    """Read a companion public key; any problem is logged and yields None."""
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("Failed to read public key", key_id=kid, error=str(exc))
        return None
    try:
        return parse_public_key(data)
    except (ValueError, TypeError) as exc:
        logger.warning("Failed to parse public key", key_id=kid, error=str(exc))
        return None


def _make_pair(
    kid: str, private_key: RSAPrivateKey, public_path: Path | None
) -> KeyPair:
    """Pair a private key with its companion public key, if usable.

    A missing, unparseable, or mismatching companion leaves the kid
    signing-only: it signs but is not published in JWKS.
    """
    public_key = _load_public_key(public_path, kid) if public_path else None
    expected = private_key.public_key().public_numbers()
    if public_key is not None and public_key.public_numbers() != expected:
        logger.warning("Public key does not match private key", key_id=kid)
        public_key = None
    if public_key is None:
        logger.info("Key is signing-only, not published in JWKS", key_id=kid)
    return KeyPair(kid=kid, private_key=private_key, public_key=public_key)


def build_key_set(pairs: dict[str, KeyPair], active_kid: str) -> KeySet:
    """Assemble a key set and pre-serialize the JWKS of its public keys.

    ``jwks`` stays ``None`` when no pair has a public key.
    """
    key_set = KeySet(pairs=pairs, active_kid=active_kid)
    public_keys = key_set.public_keys()
    if not public_keys:
        return key_set
    return key_set.model_copy(update={"jwks": encode_jwks(public_keys)})


def load_directory(path: str | Path, active_kid: str = DEFAULT_KEY_ID) -> KeySet:
    """Load every ``<kid>_private.<ext>`` key pair found in a directory.

    A missing ``<kid>_public.<ext>`` companion is tolerated. Unreadable or
    unparseable private keys are skipped with a warning.

    Raises:
        LoadError: The directory cannot be read or no private key loads.
    """
    directory = Path(path)
    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        raise LoadError(f"Failed to read keys directory {directory}: {exc}") from exc

    pairs: dict[str, KeyPair] = {}
    for entry in entries:
        match = _PRIVATE_KEY_FILE.match(entry.name)
        if match is None or not entry.is_file():
            continue
        kid = match["kid"]
        try:
            private_key = parse_private_key(entry.read_bytes())
        except OSError as exc:
            logger.warning("Failed to read private key", key_id=kid, error=str(exc))
            continue
        except (ValueError, TypeError) as exc:
            logger.warning("Failed to parse private key", key_id=kid, error=str(exc))
            continue

        public_path = directory / f"{kid}_public.{match['ext']}"
        pairs[kid] = _make_pair(kid, private_key, public_path)
        logger.info("Loaded key pair", key_id=kid)

    if not pairs:
        raise LoadError(f"No valid key pairs found in directory: {directory}")
    return build_key_set(pairs, active_kid)


def load_single(
    private_path: str | Path,
    public_path: str | Path | None = None,
    kid: str = DEFAULT_KEY_ID,
) -> KeySet:
    """Load one key pair from explicit file paths (legacy single-key mode).

    Raises:
        LoadError: The private key cannot be read or parsed.
    """
    try:
        private_key = parse_private_key(Path(private_path).read_bytes())
    except OSError as exc:
        raise LoadError(f"Failed to read private key: {exc}") from exc
    except (ValueError, TypeError) as exc:
        raise LoadError(f"Failed to parse private key: {exc}") from exc

    pair = _make_pair(kid, private_key, Path(public_path) if public_path else None)
    return build_key_set({kid: pair}, kid)
