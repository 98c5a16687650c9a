"""Password hashing: argon2id, with bcrypt and scrypt verification for older hashes.

New hashes are always argon2id via ``argon2-cffi``. ``verify_password``
picks the algorithm from the hash prefix, so bcrypt hashes carried over
from the previous portal (``$2y$``/``$2b$``) and scrypt hashes seeded by
other tooling keep working until the next successful login rehashes them.

Usage::

    from gatehouse.security.passwords import hash_password, verify_password

    hashed = hash_password("my-password")
    ok = verify_password("my-password", hashed)
"""

import base64
import hashlib
import hmac
import logging
from functools import cache

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

logger = logging.getLogger("gatehouse.security")

_ARGON2_PREFIX = "$argon2"
_SCRYPT_PREFIX = "$scrypt$"
_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

# bcrypt only reads the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72

# Scrypt defaults, used when a stored hash omits a parameter
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1

_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Hash a password with argon2id, returning a PHC-format string."""
    if not password:
        msg = "Password must not be empty."
        raise ValueError(msg)
    return _hasher.hash(password)


def verify_password(password: str, phc_hash: str) -> bool:
    """Check *password* against a stored PHC hash.

    Returns ``False`` for a mismatch, an empty input, a malformed hash,
    or an unrecognized algorithm (the last is logged).
    """
    if not password or not phc_hash:
        return False

    if phc_hash.startswith(_ARGON2_PREFIX):
        try:
            return _hasher.verify(phc_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    if phc_hash.startswith(_BCRYPT_PREFIXES):
        return _verify_bcrypt(password, phc_hash)

    if phc_hash.startswith(_SCRYPT_PREFIX):
        return _verify_scrypt(password, phc_hash)

    logger.warning("Unknown password hash format: %s...", phc_hash[:12])
    return False


def needs_rehash(phc_hash: str) -> bool:
    """True when *phc_hash* is not argon2 with the current parameters."""
    if not phc_hash.startswith(_ARGON2_PREFIX):
        return True
    try:
        return _hasher.check_needs_rehash(phc_hash)
    except InvalidHashError:
        return True


@cache
def dummy_hash() -> str:
    """A throwaway hash verified against unknown identities.

    Verifying something for every login attempt keeps response timing
    from revealing whether the identity exists.
    """
    return _hasher.hash("gatehouse-dummy-password")


def _verify_scrypt(password: str, phc_hash: str) -> bool:
    # Format: $scrypt$n=N,r=R,p=P$salt_b64$dk_b64
    parts = phc_hash.split("$")
    if len(parts) != 5 or parts[1] != "scrypt":
        return False

    try:
        params = {}
        for param in parts[2].split(","):
            key, _, value = param.partition("=")
            params[key] = int(value)
        salt = base64.b64decode(parts[3])
        expected = base64.b64decode(parts[4])
    except ValueError:
        return False

    try:
        derived = hashlib.scrypt(
            password.encode("utf-8"),
            salt=salt,
            n=params.get("n", _SCRYPT_N),
            r=params.get("r", _SCRYPT_R),
            p=params.get("p", _SCRYPT_P),
            dklen=len(expected),
        )
    except (ValueError, OverflowError):
        # Unusable cost parameters (n not a power of two, over the memory limit)
        return False
    return hmac.compare_digest(derived, expected)


def _verify_bcrypt(password: str, stored: str) -> bool:
    # $2y$ is PHP's name for the same algorithm as $2b$
    if stored.startswith("$2y$"):
        stored = "$2b$" + stored[4:]
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], stored.encode("ascii"))
    except ValueError:
        return False
