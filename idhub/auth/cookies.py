"""Binds session tokens to browser cookies."""

import ipaddress
from typing import Mapping, Optional

from flask import Response

ROOT = 'root'
"""Domain setting that scopes the cookie to the request's root domain."""


def cookie_name(service: str) -> str:
    """The name of the session cookie for ``service``."""
    return f'{service}_ut'


def _hostname(host: str) -> str:
    host = host.strip().lower()
    if host.startswith('['):
        return host[1:host.find(']')] if ']' in host else host[1:]
    if host.count(':') == 1:
        host = host.split(':', 1)[0]
    return host.rstrip('.')


def _is_ip(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def cookie_domain(host: str, domain: Optional[str] = ROOT) -> Optional[str]:
    """
    Get the ``Domain`` attribute for a session cookie.

    Parameters
    ----------
    host : str
        The request's ``Host`` header, possibly with a port.
    domain : str
        ``root`` (the default) to scope the cookie to the last two labels
        of ``host``; any other value is used as the domain itself.

    Returns
    -------
    str or None
        A domain with a leading ``.``, or ``None`` for a host-only cookie
        (IP literals and single-label hosts like ``localhost``).

    """
    if domain and domain != ROOT:
        return '.' + domain.lstrip('.')
    hostname = _hostname(host or '')
    labels = [label for label in hostname.split('.') if label]
    if _is_ip(hostname) or len(labels) < 2:
        return None
    return '.' + '.'.join(labels[-2:])


def bind_to_cookie(response: Response, host: str, name: str, token: str,
                   domain: Optional[str] = ROOT, days: Optional[int] = None,
                   secure: bool = True, httponly: bool = False,
                   samesite: Optional[str] = 'None',
                   path: str = '/') -> Response:
    """
    Set the session cookie on a response.

    The cookie is session-only when ``days`` is falsy, and otherwise
    persists for ``days * 86400`` seconds.
    """
    response.set_cookie(
        name, token,
        max_age=days * 86400 if days else None,
        domain=cookie_domain(host, domain),
        path=path,
        secure=secure,
        httponly=httponly,
        samesite=samesite
    )
    return response


def clear_cookie(response: Response, host: str, name: str,
                 domain: Optional[str] = ROOT, path: str = '/',
                 secure: bool = True,
                 samesite: Optional[str] = 'None') -> Response:
    """Expire the session cookie on the client."""
    response.set_cookie(name, '', max_age=0, expires=0,
                        domain=cookie_domain(host, domain), path=path,
                        secure=secure, samesite=samesite)
    return response


def read_from_cookie(cookies: Mapping[str, str], name: str) -> Optional[str]:
    """Get the session token from request cookies, if present."""
    value = cookies.get(name)
    return value or None
