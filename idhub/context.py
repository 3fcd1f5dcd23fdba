"""
The services one process shares across requests.

Everything that used to be module-global (the pool, the token secret, the
provider table) hangs off one :class:`ServiceContext`, built from config
by the app factory and kept on ``app.extensions['idhub']``.
"""

import logging
from typing import Any, Mapping, Optional

from flask import Flask, current_app

from . import util
from .auth.tokens import TokenCodec
from .domain import Account, Provider, SessionPayload
from .exceptions import ConfigurationError
from .services.accounts import AccountStore
from .services.datastore import Datastore
from .services.nonces import NonceStore
from .services.providers import MagicLinks, ProviderRegistry

logger = logging.getLogger(__name__)

EXTENSION = 'idhub'


class ServiceContext(object):
    """
    Wires the datastore, token codec, and account services together.

    Parameters
    ----------
    datastore : :class:`.Datastore`
    codec : :class:`.TokenCodec`
    nonces : :class:`.NonceStore`
    session_duration : int
        Seconds until an issued session token expires.
    magic_link_duration : int
        Seconds for which a magic-link salt may be redeemed.

    """

    def __init__(self, datastore: Datastore, codec: TokenCodec,
                 nonces: NonceStore, session_duration: int = 2592000,
                 magic_link_duration: int = 900) -> None:
        self.datastore = datastore
        self.codec = codec
        self.accounts = AccountStore(datastore)
        self.providers = ProviderRegistry()
        self.magic_links = MagicLinks(codec, nonces, magic_link_duration)
        self.session_duration = session_duration

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'ServiceContext':
        """Build the services described by a Flask config."""
        if not config.get('TOKEN_PASS'):
            raise ConfigurationError('TOKEN_PASS must be set')
        datastore = Datastore(
            config['DATABASE_URI'],
            pool_size=int(config.get('DB_POOL_MAX', 20)),
            pool_recycle=int(config.get('DB_IDLE_TIMEOUT', 30)),
            pool_timeout=float(config.get('DB_CONNECTION_TIMEOUT', 2))
        )
        codec = TokenCodec(config['TOKEN_PASS'],
                           bool(config.get('ACCEPT_LEGACY_TOKENS', False)))
        nonces = NonceStore.from_config(
            config.get('REDIS_HOST', 'localhost'),
            int(config.get('REDIS_PORT', 6379)),
            int(config.get('REDIS_DATABASE', 0)),
            fake=bool(config.get('REDIS_FAKE', False))
        )
        return cls(datastore, codec, nonces,
                   session_duration=int(config.get('SESSION_DURATION',
                                                   2592000)),
                   magic_link_duration=int(config.get('MAGIC_LINK_DURATION',
                                                      900)))

    def init_app(self, app: Flask) -> None:
        """Attach to a Flask app."""
        app.extensions[EXTENSION] = self

    def issue_session(self, account: Account,
                      now: Optional[int] = None) -> str:
        """Generate a session token for an account."""
        issued_at = util.now() if now is None else now
        return self.codec.encode(SessionPayload(
            subject=account.id,
            issued_at=issued_at,
            expires_at=issued_at + self.session_duration
        ))

    def register_provider(self, name: str, provider: int,
                          verifier: Any) -> None:
        """Accept logins from a third-party provider at ``/auth/<name>``."""
        if provider <= Provider.LOCAL:
            raise ConfigurationError('Providers need a positive tag')
        self.providers.register(name, provider, verifier)

    def close(self) -> None:
        """Release pooled connections."""
        self.datastore.close()


def get_context(app: Optional[Flask] = None) -> ServiceContext:
    """Get the :class:`ServiceContext` for ``app``, or the current app."""
    app = app or current_app
    try:
        return app.extensions[EXTENSION]  # type: ignore
    except KeyError as e:
        raise ConfigurationError('idhub services are not initialized') from e
