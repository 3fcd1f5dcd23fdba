"""Resolves the caller's session from the session cookie."""

import logging
from typing import Optional

from flask import Flask, current_app, request

from . import cookies, tokens
from .. import util
from ..domain import SessionPayload

logger = logging.getLogger(__name__)


class Auth(object):
    """
    Attaches the caller's session to the request as ``request.auth``.

    ``request.auth`` is a :class:`.SessionPayload`, or ``None`` for an
    anonymous caller. A missing, undecodable, or expired token all read
    as anonymous, and are logged differently.

    .. code-block:: python

       def create_web_app() -> Flask:
           app = Flask('idhub')
           app.config.from_pyfile('config.py')
           ServiceContext.from_config(app.config).init_app(app)
           Auth(app)
           app.register_blueprint(routes.blueprint)
           return app

    """

    def __init__(self, app: Optional[Flask] = None) -> None:
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """
        Attach :meth:`.load_session` to the Flask app.

        Parameters
        ----------
        app : :class:`Flask`

        """
        self.app = app
        app.config.setdefault('SERVICE_NAME', 'idhub')
        app.before_request(self.load_session)

    def load_session(self) -> None:
        """Decode the session cookie, and attach the session to the request."""
        request.auth = self.resolve(request.cookies)  # type: ignore

    def resolve(self, request_cookies: dict) -> Optional[SessionPayload]:
        """Get the unexpired session carried by ``request_cookies``."""
        name = cookies.cookie_name(current_app.config['SERVICE_NAME'])
        token = cookies.read_from_cookie(request_cookies, name)
        if token is None:
            logger.debug('No session cookie')
            return None
        payload = current_app.extensions['idhub'].codec.decode(token)
        if payload is None:
            logger.info('Session cookie rejected; treating as anonymous')
            return None
        if not isinstance(payload.subject, int) or payload.nonce is not None:
            logger.info('Token in session cookie is not a session token')
            return None
        if payload.expired(util.now()):
            logger.debug('Session expired at %s', payload.expires_at)
            return None
        return payload


__all__ = ('Auth', 'cookies', 'tokens')
