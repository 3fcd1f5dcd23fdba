"""Tests for :mod:`idhub.services.providers`."""

import secrets
from unittest import TestCase, mock

import fakeredis
import pytest

from idhub.auth.tokens import TokenCodec
from idhub.domain import Provider, SessionPayload
from idhub.exceptions import AuthenticationError, ValidationError
from idhub.services.nonces import NonceStore
from idhub.services.providers import MagicLinks, ProviderAssertion, \
    ProviderRegistry


@pytest.fixture()
def registry():
    registry = ProviderRegistry()

    def verify(token):
        if token != 'good-token':
            raise AuthenticationError('Invalid Google token')
        return ProviderAssertion(email='g@x.io', external_id='g-123')

    registry.register('google', Provider.GOOGLE, verify)
    registry.register('nomail', Provider.MAXTHON,
                      lambda token: ProviderAssertion(email=None))
    return registry


def test_provider_login(store, registry):
    account = registry.login(store, 'Google', 'good-token')
    assert account.provider == Provider.GOOGLE
    assert account.attributes == {'external_id': 'g-123'}
    assert registry.login(store, 'google', 'good-token').id == account.id
    assert 'google' in registry
    assert 'facebook' not in registry


def test_provider_rejects(store, registry):
    with pytest.raises(AuthenticationError):
        registry.login(store, 'google', 'bad-token')
    with pytest.raises(ValidationError):
        registry.login(store, 'facebook', 'good-token')
    with pytest.raises(ValidationError):
        registry.login(store, 'nomail', 'token')
    with pytest.raises(ValidationError):
        registry.login(store, 'google', '')


def test_deleted_account_cannot_use_provider(store, registry):
    account = registry.login(store, 'google', 'good-token')
    store.delete(account.id)
    with pytest.raises(AuthenticationError):
        registry.login(store, 'google', 'good-token')


class TestMagicLinks(TestCase):
    """One-time salts can be redeemed once, before they expire."""

    def setUp(self):
        self.codec = TokenCodec('foosecret')
        self.nonces = NonceStore(
            fakeredis.FakeStrictRedis(server=fakeredis.FakeServer())
        )
        self.links = MagicLinks(self.codec, self.nonces, duration=900)

    def test_redeem_once(self):
        salt = self.links.issue('m@x.io')
        self.assertEqual(self.links.redeem(salt), 'm@x.io')
        with self.assertRaisesRegex(AuthenticationError, 'already used'):
            self.links.redeem(salt)

    def test_each_salt_is_distinct(self):
        first, second = self.links.issue('m@x.io'), self.links.issue('m@x.io')
        self.assertEqual(self.links.redeem(first), 'm@x.io')
        self.assertEqual(self.links.redeem(second), 'm@x.io')

    def test_expired(self):
        with mock.patch('idhub.util.now', return_value=1000):
            salt = self.links.issue('m@x.io')
        with mock.patch('idhub.util.now', return_value=1900):
            with self.assertRaisesRegex(AuthenticationError, 'expired'):
                self.links.redeem(salt)

    def test_not_a_salt(self):
        session = self.codec.encode(SessionPayload(1, 1000))
        for salt in [session, 'garbage', '']:
            with self.assertRaises(AuthenticationError):
                self.links.redeem(salt)

    def test_issue_needs_email(self):
        with self.assertRaises(ValidationError):
            self.links.issue('')


class TestNonceStore(TestCase):

    def test_consume(self):
        nonces = NonceStore(
            fakeredis.FakeStrictRedis(server=fakeredis.FakeServer())
        )
        self.assertTrue(nonces.consume('abc', 60))
        self.assertFalse(nonces.consume('abc', 60))
        self.assertTrue(nonces.consume('def', 60))

    def test_from_config_fake(self):
        nonces = NonceStore.from_config('localhost', 6379, 0, fake=True)
        nonce = secrets.token_hex(8)
        self.assertTrue(nonces.consume(nonce, 60))
        self.assertFalse(nonces.consume(nonce, 60))
