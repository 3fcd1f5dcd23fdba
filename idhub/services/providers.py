"""
Third-party identity providers and magic-link login.

A provider is represented by a verifier: any callable that takes the
credential the client received from the provider (an ID token, an
authorization code) and returns a :class:`ProviderAssertion`, or raises
:class:`AuthenticationError`. The HTTP calls to the provider live in the
verifier, not here.
"""

import logging
import secrets
from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple

from . import reconcile
from .accounts import AccountStore
from .nonces import NonceStore
from .. import util
from ..auth.tokens import TokenCodec
from ..domain import Account, Provider, SessionPayload
from ..exceptions import AuthenticationError, ValidationError

logger = logging.getLogger(__name__)


class ProviderAssertion(NamedTuple):
    """What a provider vouches for about the user."""

    email: Optional[str]
    external_id: Optional[str] = None


Verifier = Callable[[Any], ProviderAssertion]


class ProviderRegistry(object):
    """Maps provider names, as used in URLs, to tags and verifiers."""

    def __init__(self) -> None:
        self._providers: Dict[str, Tuple[int, Verifier]] = {}

    def register(self, name: str, provider: int, verifier: Verifier) -> None:
        """Add a provider, replacing any with the same name."""
        self._providers[name.lower()] = (provider, verifier)
        logger.debug('Registered provider %s (%i)', name, provider)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._providers

    def get(self, name: str) -> Tuple[int, Verifier]:
        """Get the tag and verifier for a provider."""
        try:
            return self._providers[name.lower()]
        except KeyError as e:
            raise ValidationError(f'Unknown provider: {name}') from e

    def login(self, store: AccountStore, name: str,
              credential: Any) -> Account:
        """
        Verify a provider credential and get (or create) its account.

        Raises
        ------
        :class:`ValidationError`
            If the provider is unknown or vouches for no e-mail address.
        :class:`AuthenticationError`
            If the verifier rejects the credential, or the account has been
            deleted.

        """
        provider, verify = self.get(name)
        if not credential:
            raise ValidationError('A provider credential is required')
        assertion = verify(credential)
        if not assertion.email:
            raise ValidationError(f'{name} did not provide an email address')
        attributes = {}
        if assertion.external_id:
            attributes['external_id'] = str(assertion.external_id)
        account = reconcile.ensure_user(store, email=assertion.email,
                                        provider=provider,
                                        attributes=attributes)
        if not account.is_active:
            raise AuthenticationError('Invalid credentials')
        logger.info('Account %s logged in with %s', account.id, name)
        return account


class MagicLinks(object):
    """
    Issues and redeems one-time login salts.

    A salt is a token whose subject is an e-mail address. It expires after
    ``duration`` seconds, and its nonce can be consumed only once.

    Parameters
    ----------
    codec : :class:`.TokenCodec`
    nonces : :class:`.NonceStore`
    duration : int
        Lifetime of a salt, in seconds.

    """

    def __init__(self, codec: TokenCodec, nonces: NonceStore,
                 duration: int = 900) -> None:
        self.codec = codec
        self.nonces = nonces
        self.duration = duration

    def issue(self, email: str) -> str:
        """Generate a one-time salt for ``email``."""
        if not email:
            raise ValidationError('Email is required')
        issued_at = util.now()
        return self.codec.encode(SessionPayload(
            subject=email,
            issued_at=issued_at,
            expires_at=issued_at + self.duration,
            nonce=secrets.token_urlsafe(16)
        ))

    def redeem(self, salt: str) -> str:
        """
        Consume a one-time salt.

        Returns
        -------
        str
            The e-mail address the salt was issued for.

        Raises
        ------
        :class:`AuthenticationError`
            If the salt is invalid, expired, or already used.

        """
        payload = self.codec.decode(salt)
        if payload is None or payload.nonce is None \
                or not isinstance(payload.subject, str):
            raise AuthenticationError('Invalid login link')
        if payload.expired():
            raise AuthenticationError('Login link has expired')
        ttl = (payload.expires_at or util.now()) - util.now()
        if not self.nonces.consume(payload.nonce, ttl):
            logger.warning('Magic link replayed')
            raise AuthenticationError('Login link was already used')
        return payload.subject

    def login(self, store: AccountStore, salt: str) -> Account:
        """Redeem a salt, and get (or create) the account for its e-mail."""
        email = self.redeem(salt)
        account = reconcile.ensure_user(store, email=email,
                                        provider=Provider.MAGIC_LINK)
        if not account.is_active:
            raise AuthenticationError('Invalid credentials')
        logger.info('Account %s logged in with a magic link', account.id)
        return account
