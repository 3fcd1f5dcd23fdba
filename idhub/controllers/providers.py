"""Controllers for magic-link and third-party provider login."""

import logging
from typing import Any, Mapping

from . import SESSION, ResponseData, account_view, handles_errors, \
    success
from .schemas import MagicLinkRequest, ProviderLoginRequest
from .. import status
from ..context import ServiceContext

logger = logging.getLogger(__name__)


@handles_errors
def issue_magic_link(ctx: ServiceContext,
                     data: Mapping[str, Any]) -> ResponseData:
    """
    Generate a one-time login salt for an e-mail address.

    Delivering the salt (usually as a link in an e-mail) is up to the
    caller; redeem it with ``POST /users/login`` and ``onetime_salt``.
    """
    form = MagicLinkRequest.model_validate(data)
    salt = ctx.magic_links.issue(form.email)
    return success({'onetime_salt': salt,
                    'expires_in': ctx.magic_links.duration},
                   status.HTTP_201_CREATED)


@handles_errors
def provider_login(ctx: ServiceContext, provider: str,
                   data: Mapping[str, Any]) -> ResponseData:
    """Log in with a credential issued by a third-party provider."""
    form = ProviderLoginRequest.model_validate(data)
    account = ctx.providers.login(ctx.accounts, provider, form.token)
    token = ctx.issue_session(account)
    return success(account_view(account), cookies={SESSION: token})
