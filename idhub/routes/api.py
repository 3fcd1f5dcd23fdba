"""Provides routes for the account and session API."""

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, Response, current_app, jsonify, request

from ..auth import cookies
from ..context import get_context
from ..controllers import SESSION, ResponseData, accounts, health, providers

logger = logging.getLogger(__name__)
blueprint = Blueprint('api', __name__, url_prefix='')


def _body() -> Dict[str, Any]:
    payload = request.get_json(force=True, silent=True)    # Ignore C-T.
    return payload if isinstance(payload, dict) else {}


def set_cookies(response: Response, data: dict) -> None:
    """
    Update a :class:`.Response` with cookies in controller data.

    Controllers seeking to set the session cookie include a ``cookies``
    key in their response data; a ``None`` value clears the cookie.
    """
    session_cookies: Optional[Dict[str, Optional[str]]] = \
        data.pop('cookies', None)
    if not session_cookies or SESSION not in session_cookies:
        return None
    config = current_app.config
    name = cookies.cookie_name(config['SERVICE_NAME'])
    host = request.host
    token = session_cookies[SESSION]
    if token is None:
        logger.debug('Clearing cookie %s', name)
        cookies.clear_cookie(response, host, name,
                             domain=config['SESSION_COOKIE_DOMAIN'],
                             path=config['SESSION_COOKIE_PATH'],
                             secure=config['SESSION_COOKIE_SECURE'],
                             samesite=config['SESSION_COOKIE_SAMESITE'])
        return None
    logger.debug('Set cookie %s', name)
    cookies.bind_to_cookie(response, host, name, token,
                           domain=config['SESSION_COOKIE_DOMAIN'],
                           days=config['SESSION_COOKIE_DAYS'],
                           secure=config['SESSION_COOKIE_SECURE'],
                           httponly=config['SESSION_COOKIE_HTTPONLY'],
                           samesite=config['SESSION_COOKIE_SAMESITE'],
                           path=config['SESSION_COOKIE_PATH'])
    return None


def _respond(result: ResponseData) -> Response:
    data, status_code, headers = result
    cookie_data = data.pop('cookies', None)
    response: Response = jsonify(data)
    response.status_code = status_code
    response.headers.extend(headers)
    if status_code < 400 and cookie_data is not None:
        set_cookies(response, {'cookies': cookie_data})
    return response


@blueprint.route('/users/register', methods=['POST'])
def register() -> Response:
    """Create an account, and log it in."""
    return _respond(accounts.register(get_context(), _body()))


@blueprint.route('/users/login', methods=['POST'])
def login() -> Response:
    """Log in with a password or a one-time salt."""
    return _respond(accounts.login(get_context(), _body()))


@blueprint.route('/users/logout', methods=['POST'])
def logout() -> Response:
    """Clear the session cookie."""
    return _respond(accounts.logout(get_context(), request.auth))


@blueprint.route('/users/me', methods=['GET'])
def me() -> Response:
    """The account of the current session."""
    return _respond(accounts.current_account(get_context(), request.auth))


@blueprint.route('/users/<int:account_id>', methods=['GET'])
def get_account(account_id: int) -> Response:
    """Get an account by id."""
    return _respond(accounts.get_account(get_context(), account_id))


@blueprint.route('/users', methods=['GET'])
def list_accounts() -> Response:
    """List accounts, or get one with ``?email=``."""
    if 'email' in request.args:
        return _respond(accounts.get_account_by_email(
            get_context(), request.args['email']
        ))
    return _respond(accounts.list_accounts(get_context(), request.args))


@blueprint.route('/users/<int:account_id>/update', methods=['POST'])
def update_account(account_id: int) -> Response:
    """Update an account."""
    return _respond(accounts.update_account(get_context(), account_id,
                                            _body()))


@blueprint.route('/users/<int:account_id>/password', methods=['POST'])
def change_password(account_id: int) -> Response:
    """Change the password of an account."""
    return _respond(accounts.change_password(get_context(), account_id,
                                             _body()))


@blueprint.route('/users/<int:account_id>', methods=['DELETE'])
def delete_account(account_id: int) -> Response:
    """Mark an account as deleted."""
    return _respond(accounts.delete_account(get_context(), account_id))


@blueprint.route('/auth/magic-link', methods=['POST'])
def issue_magic_link() -> Response:
    """Generate a one-time login salt."""
    return _respond(providers.issue_magic_link(get_context(), _body()))


@blueprint.route('/auth/<string:provider>', methods=['POST'])
def provider_login(provider: str) -> Response:
    """Log in with a third-party provider credential."""
    return _respond(providers.provider_login(get_context(), provider,
                                             _body()))


@blueprint.route('/health/db', methods=['GET'])
def database_health() -> Response:
    """Health check endpoint for the datastore."""
    return _respond(health.database_health(get_context()))


@blueprint.route('/status/db-pool', methods=['GET'])
def pool_status() -> Response:
    """Connection pool snapshot."""
    return _respond(health.pool_status(get_context()))
