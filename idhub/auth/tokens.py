"""
Encrypted session tokens.

A token is ``<version>-<hex>``. Version ``1`` is AES-256-CBC under a
random IV, followed by an HMAC-SHA256 tag over the version, IV, and
ciphertext (encrypt-then-MAC). Both keys are derived from one shared
secret with HKDF. Version ``0`` tokens carry no tag and can be altered
without detection; they are read only when ``accept_legacy`` is set.
"""

import hmac
import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..domain import SessionPayload
from ..exceptions import ConfigurationError, CryptoError

logger = logging.getLogger(__name__)

VERSION = '1'
LEGACY_VERSION = '0'
IV_BYTES = 16
TAG_BYTES = 32
BLOCK_BITS = 128


def _derive_keys(secret: bytes) -> Tuple[bytes, bytes]:
    material = HKDF(
        algorithm=hashes.SHA256(),
        length=64,
        salt=None,
        info=b'idhub session token v1',
    ).derive(secret)
    return material[:32], material[32:]


def _encrypt(key: bytes, iv: bytes, plaintext: bytes) -> bytes:
    padder = padding.PKCS7(BLOCK_BITS).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def _decrypt(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(BLOCK_BITS).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def _canonical(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(',', ':')).encode()


class TokenCodec:
    """
    Encodes :class:`SessionPayload` as opaque bearer tokens, and back.

    Parameters
    ----------
    secret : str
        Shared secret for every process that reads or writes tokens.
    accept_legacy : bool
        Also decode version ``0`` tokens. The secret is then used directly
        as the AES key and must be exactly 32 bytes.

    """

    def __init__(self, secret: str, accept_legacy: bool = False) -> None:
        if not secret:
            raise ConfigurationError('A token secret is required')
        raw = secret.encode('utf-8')
        self._enc_key, self._mac_key = _derive_keys(raw)
        self._legacy_key: Optional[bytes] = None
        if accept_legacy:
            if len(raw) != 32:
                raise ConfigurationError(
                    'Legacy tokens need a 32-byte secret'
                )
            self._legacy_key = raw

    def _tag(self, body: bytes) -> bytes:
        return hmac.new(self._mac_key, VERSION.encode() + body,
                        'sha256').digest()

    def encode(self, payload: SessionPayload) -> str:
        """Generate a version ``1`` token for ``payload``."""
        data = {'sub': payload.subject, 'iat': payload.issued_at,
                'exp': payload.expires_at}
        if payload.nonce is not None:
            data['nonce'] = payload.nonce
        iv = os.urandom(IV_BYTES)
        body = iv + _encrypt(self._enc_key, iv, _canonical(data))
        return f'{VERSION}-{(body + self._tag(body)).hex()}'

    def decode(self, token: Optional[str]) -> Optional[SessionPayload]:
        """
        Get the payload of a token.

        Returns ``None`` if the token cannot be decoded for any reason,
        so that a bad token reads as an anonymous caller. Expiry is not
        checked here.
        """
        if not token:
            return None
        try:
            return self._decode(token)
        except CryptoError as e:
            logger.warning('Rejected session token: %s', e)
        return None

    def _decode(self, token: str) -> SessionPayload:
        version, sep, encoded = token.partition('-')
        if not sep:
            raise CryptoError('Missing version prefix')
        try:
            raw = bytes.fromhex(encoded)
        except ValueError as e:
            raise CryptoError('Not hex encoded') from e

        if version == VERSION:
            return _payload(self._open(raw))
        if version == LEGACY_VERSION and self._legacy_key is not None:
            return _legacy_payload(self._open_legacy(raw, self._legacy_key))
        raise CryptoError(f'Unsupported token version: {version!r}')

    def _open(self, raw: bytes) -> Dict[str, Any]:
        if len(raw) < IV_BYTES + TAG_BYTES + BLOCK_BITS // 8:
            raise CryptoError('Token too short')
        body, tag = raw[:-TAG_BYTES], raw[-TAG_BYTES:]
        if not hmac.compare_digest(tag, self._tag(body)):
            raise CryptoError('Bad signature')
        return _load(_unpad(self._enc_key, body))

    def _open_legacy(self, raw: bytes, key: bytes) -> Dict[str, Any]:
        if len(raw) < IV_BYTES + BLOCK_BITS // 8:
            raise CryptoError('Token too short')
        return _load(_unpad(key, raw))

    def encode_legacy(self, uid: int, create: int,
                      expire: Optional[int] = None) -> str:
        """Generate a version ``0`` token, as issued before version ``1``."""
        if self._legacy_key is None:
            raise ConfigurationError('Legacy tokens are not enabled')
        iv = os.urandom(IV_BYTES)
        data = json.dumps({'uid': uid, 'create': create, 'expire': expire})
        body = iv + _encrypt(self._legacy_key, iv, data.encode('utf-8'))
        return f'{LEGACY_VERSION}-{body.hex()}'


def _unpad(key: bytes, body: bytes) -> bytes:
    iv, ciphertext = body[:IV_BYTES], body[IV_BYTES:]
    if not ciphertext or len(ciphertext) % (BLOCK_BITS // 8):
        raise CryptoError('Ciphertext is not block aligned')
    try:
        return _decrypt(key, iv, ciphertext)
    except ValueError as e:
        raise CryptoError('Bad padding') from e


def _load(plaintext: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(plaintext.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        raise CryptoError('Payload is not JSON') from e
    if not isinstance(data, dict):
        raise CryptoError('Payload is not an object')
    return data


def _payload(data: Dict[str, Any]) -> SessionPayload:
    subject, issued_at = data.get('sub'), data.get('iat')
    expires_at, nonce = data.get('exp'), data.get('nonce')
    if not isinstance(subject, (int, str)) or isinstance(subject, bool):
        raise CryptoError('Payload has no subject')
    if not _is_time(issued_at) or \
            (expires_at is not None and not _is_time(expires_at)):
        raise CryptoError('Payload has malformed times')
    if nonce is not None and not isinstance(nonce, str):
        raise CryptoError('Payload has a malformed nonce')
    return SessionPayload(subject, int(issued_at),
                          None if expires_at is None else int(expires_at),
                          nonce)


def _legacy_payload(data: Dict[str, Any]) -> SessionPayload:
    return _payload({'sub': data.get('uid'),
                     'iat': data.get('create'),
                     'exp': data.get('expire')})


def _is_time(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
