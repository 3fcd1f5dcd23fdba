"""Single-use nonces, kept in redis until they expire."""

import logging

import redis

logger = logging.getLogger(__name__)


class NonceStore(object):
    """
    Remembers which one-time nonces have been consumed.

    The redis client is thread safe and connects when a command runs, so
    this class only holds configuration.
    """

    PREFIX = 'idhub:nonce:'

    def __init__(self, client: redis.Redis) -> None:
        self.r = client

    @classmethod
    def from_config(cls, host: str, port: int, db: int,
                    fake: bool = False) -> 'NonceStore':
        """Connect to redis, or to an in-process fake for dev and testing."""
        if fake:
            import fakeredis
            logger.debug('Using fake redis for nonces')
            return cls(fakeredis.FakeStrictRedis())
        logger.debug('New Redis connection at %s, port %s', host, port)
        return cls(redis.StrictRedis(host=host, port=port, db=db))

    def consume(self, nonce: str, ttl: int) -> bool:
        """
        Mark ``nonce`` as used.

        Returns ``False`` if it was already used within ``ttl`` seconds.
        """
        claimed = self.r.set(self.PREFIX + nonce, 1, nx=True, ex=max(1, ttl))
        return bool(claimed)
