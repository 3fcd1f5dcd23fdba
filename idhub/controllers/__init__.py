"""
Request controllers.

Controllers take already-parsed request data plus the
:class:`.ServiceContext`, and return ``(data, status_code, headers)``.
``data`` is the response envelope: ``{"code": 0, "result": ...}`` on
success, ``{"code": 100, "err": "..."}`` on failure. A controller that
needs a cookie set or cleared adds a ``cookies`` key for the route to pop.
"""

import logging
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

import pydantic

from .. import status
from ..domain import Account, to_dict
from ..exceptions import AuthenticationError, ConflictError, \
    NotFoundError, StorageError, Unavailable, ValidationError

logger = logging.getLogger(__name__)

OK = 0
FAILED = 100

ResponseData = Tuple[Dict[str, Any], int, Dict[str, str]]

SESSION = 'session'
"""Key of the session cookie in controller ``cookies`` data."""


def account_view(account: Account) -> Dict[str, Any]:
    """The public representation of an account."""
    view = to_dict(account)
    view['provider_name'] = account.provider_name
    return view


def success(result: Any, status_code: int = status.HTTP_200_OK,
            cookies: Optional[Dict[str, Optional[str]]] = None) \
        -> ResponseData:
    """Wrap a result in the success envelope."""
    data: Dict[str, Any] = {'code': OK, 'result': result}
    if cookies is not None:
        data['cookies'] = cookies
    return data, status_code, {}


def failure(message: str, status_code: int) -> ResponseData:
    """Wrap an error message in the failure envelope."""
    return {'code': FAILED, 'err': message}, status_code, {}


def _describe(error: pydantic.ValidationError) -> str:
    first = error.errors()[0]
    field = '.'.join(str(part) for part in first.get('loc', ()))
    return f'{field}: {first["msg"]}' if field else str(first['msg'])


def handles_errors(func: Callable[..., ResponseData]) \
        -> Callable[..., ResponseData]:
    """Map service exceptions onto failure envelopes."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> ResponseData:
        try:
            return func(*args, **kwargs)
        except pydantic.ValidationError as e:
            return failure(_describe(e), status.HTTP_400_BAD_REQUEST)
        except ValidationError as e:
            return failure(str(e), status.HTTP_400_BAD_REQUEST)
        except AuthenticationError as e:
            logger.debug('Authentication failed: %s', e)
            return failure(str(e), status.HTTP_401_UNAUTHORIZED)
        except NotFoundError as e:
            return failure(str(e), status.HTTP_404_NOT_FOUND)
        except ConflictError as e:
            return failure(str(e), status.HTTP_409_CONFLICT)
        except Unavailable as e:
            logger.error('Datastore unavailable: %s', e)
            return failure('Service temporarily unavailable',
                           status.HTTP_503_SERVICE_UNAVAILABLE)
        except StorageError as e:
            logger.exception('Datastore error: %s', e)
            return failure('Internal server error',
                           status.HTTP_500_INTERNAL_SERVER_ERROR)
    return wrapper
