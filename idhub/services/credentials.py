"""Password hashing, verification, and random credential issuance."""

import hashlib
import hmac
import logging
import secrets
import string
from typing import NamedTuple, Optional

logger = logging.getLogger(__name__)

ALGORITHM = 'sha512'
ITERATIONS = 10000
KEY_LENGTH = 64
SALT_BYTES = 16

ALPHABET = string.ascii_letters + string.digits + '!@#$%^&*'
"""70 characters. Each is drawn with :func:`secrets.choice`, which rejects
out-of-range values instead of reducing modulo, so every character is
equally likely."""


class PasswordHash(NamedTuple):
    """A stored credential and the salt it was derived with."""

    hash: str
    """``<saltHex>:<derivedHex>``."""

    salt: str


def _derive(salt: str, password: str) -> str:
    # The hex text of the salt, not its bytes, is the PBKDF2 salt.
    return hashlib.pbkdf2_hmac(ALGORITHM, password.encode('utf-8'),
                               salt.encode('ascii'), ITERATIONS,
                               KEY_LENGTH).hex()


def hash_password(password: str, salt: Optional[str] = None) -> PasswordHash:
    """
    Generate a salted PBKDF2-HMAC-SHA512 hash of a password.

    Parameters
    ----------
    password : str
    salt : str
        Hex string. A random 16-byte salt is generated if not given.

    Returns
    -------
    :class:`PasswordHash`

    """
    if salt is None:
        salt = secrets.token_hex(SALT_BYTES)
    return PasswordHash(f'{salt}:{_derive(salt, password)}', salt)


def check_password(password: str, stored: str) -> bool:
    """
    Check a password against a stored hash.

    Malformed stored values are a mismatch, not an error.
    """
    if not isinstance(password, str) or not isinstance(stored, str):
        return False
    salt, sep, expected = stored.partition(':')
    if not sep or not salt or not expected:
        logger.warning('Malformed credential hash')
        return False
    try:
        derived = _derive(salt, password)
    except (UnicodeEncodeError, ValueError) as e:
        logger.warning('Could not derive credential hash: %s', e)
        return False
    return hmac.compare_digest(derived.encode('ascii'),
                               expected.lower().encode('utf-8'))


def random_password(length: int = 16) -> str:
    """Generate a password for accounts whose provider supplies none."""
    if length < 1:
        raise ValueError('Password length must be positive')
    return ''.join(secrets.choice(ALPHABET) for _ in range(length))
