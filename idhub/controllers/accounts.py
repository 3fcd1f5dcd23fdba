"""
Controllers for account registration, login, and the account directory.

Reads that fail because the datastore is momentarily unavailable are
retried here; the datastore itself never retries.
"""

import logging
from typing import Any, Mapping, Optional

from retry import retry

from . import SESSION, ResponseData, account_view, handles_errors, \
    success
from .schemas import LoginRequest, PasswordChangeRequest, RegisterRequest, \
    UpdateRequest
from .. import status
from ..context import ServiceContext
from ..domain import Account, AccountPage, SessionPayload, to_dict
from ..exceptions import AuthenticationError, NotFoundError, Unavailable, \
    ValidationError

logger = logging.getLogger(__name__)


@retry(Unavailable, tries=3, delay=0.5, backoff=2)
def _load(ctx: ServiceContext, account_id: int) -> Account:
    account = ctx.accounts.get_by_id(account_id)
    if account is None:
        raise NotFoundError('No such account')
    return account


@retry(Unavailable, tries=3, delay=0.5, backoff=2)
def _load_by_email(ctx: ServiceContext, email: str) -> Account:
    account = ctx.accounts.get_by_email(email)
    if account is None:
        raise NotFoundError('No such account')
    return account


@retry(Unavailable, tries=3, delay=0.5, backoff=2)
def _list(ctx: ServiceContext, **filters: Any) -> AccountPage:
    return ctx.accounts.list(**filters)


def _int(params: Mapping[str, Any], key: str,
         default: Optional[int] = None) -> Optional[int]:
    value = params.get(key)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f'{key} must be an integer') from e


@handles_errors
def register(ctx: ServiceContext, data: Mapping[str, Any]) -> ResponseData:
    """
    Create an account and log it in.

    Parameters
    ----------
    ctx : :class:`.ServiceContext`
    data : dict
        ``email``, and optionally ``password``, ``provider`` (or ``from``)
        and ``attributes`` (or ``info``).

    Returns
    -------
    dict
        Envelope with the new account.
    int
        An HTTP status code.
    dict
        Headers to add to the response.

    """
    form = RegisterRequest.model_validate(data)
    account = ctx.accounts.create(form.email, password=form.password,
                                  provider=form.provider,
                                  attributes=form.attributes)
    token = ctx.issue_session(account)
    return success(account_view(account), status.HTTP_201_CREATED,
                   cookies={SESSION: token})


@handles_errors
def login(ctx: ServiceContext, data: Mapping[str, Any]) -> ResponseData:
    """Log in with a password, or with a one-time magic-link salt."""
    form = LoginRequest.model_validate(data)
    if form.onetime_salt:
        account = ctx.magic_links.login(ctx.accounts, form.onetime_salt)
    else:
        account = ctx.accounts.authenticate(form.email, form.password)
    logger.info('Account %s logged in', account.id)
    token = ctx.issue_session(account)
    return success(account_view(account), cookies={SESSION: token})


@handles_errors
def logout(ctx: ServiceContext,
           session: Optional[SessionPayload]) -> ResponseData:
    """Clear the session cookie. Tokens are stateless; nothing else to do."""
    if session is not None:
        logger.info('Account %s logged out', session.subject)
    return success({'logged_out': True}, cookies={SESSION: None})


@handles_errors
def current_account(ctx: ServiceContext,
                    session: Optional[SessionPayload]) -> ResponseData:
    """Get the account of the caller's session."""
    if session is None:
        raise AuthenticationError('Not logged in')
    try:
        account = _load(ctx, int(session.subject))
    except NotFoundError as e:
        raise AuthenticationError('Not logged in') from e
    if not account.is_active:
        raise AuthenticationError('Not logged in')
    return success(account_view(account))


@handles_errors
def get_account(ctx: ServiceContext, account_id: int) -> ResponseData:
    """Get an account by id."""
    return success(account_view(_load(ctx, account_id)))


@handles_errors
def get_account_by_email(ctx: ServiceContext, email: str) -> ResponseData:
    """Get an account by e-mail address."""
    if not email:
        raise ValidationError('Email is required')
    return success(account_view(_load_by_email(ctx, email)))


@handles_errors
def list_accounts(ctx: ServiceContext,
                  params: Mapping[str, Any]) -> ResponseData:
    """
    Get a page of accounts.

    Parameters
    ----------
    ctx : :class:`.ServiceContext`
    params : dict
        Query parameters: ``page``, ``limit``, ``status``, ``provider``
        (or ``from``), and ``search``.

    """
    provider = _int(params, 'provider')
    if provider is None:
        provider = _int(params, 'from')
    page = _list(ctx, page=_int(params, 'page', 1),
                 limit=_int(params, 'limit', 20),
                 status=_int(params, 'status'), provider=provider,
                 search=params.get('search') or None)
    return success({
        'accounts': [account_view(account) for account in page.accounts],
        'pagination': to_dict(page.pagination)
    })


@handles_errors
def update_account(ctx: ServiceContext, account_id: int,
                   data: Mapping[str, Any]) -> ResponseData:
    """Update the e-mail, provider, attributes, or status of an account."""
    form = UpdateRequest.model_validate(data)
    fields = form.model_dump(exclude_unset=True)
    account = ctx.accounts.update(account_id, fields)
    return success(account_view(account))


@handles_errors
def change_password(ctx: ServiceContext, account_id: int,
                    data: Mapping[str, Any]) -> ResponseData:
    """Change the password of an account, given the current one."""
    form = PasswordChangeRequest.model_validate(data)
    ctx.accounts.change_password(account_id, form.old_password,
                                 form.new_password)
    return success({'id': account_id})


@handles_errors
def delete_account(ctx: ServiceContext, account_id: int) -> ResponseData:
    """Mark an account as deleted."""
    account = ctx.accounts.delete(account_id)
    return success(account_view(account))
