"""Controllers for datastore health reporting."""

from . import ResponseData, failure, handles_errors, success
from .. import status
from ..context import ServiceContext


@handles_errors
def database_health(ctx: ServiceContext) -> ResponseData:
    """Check that the datastore answers a trivial query."""
    if not ctx.datastore.ping():
        return failure('Database unavailable',
                       status.HTTP_503_SERVICE_UNAVAILABLE)
    return success({'status': 'ok', 'dialect': ctx.datastore.dialect})


@handles_errors
def pool_status(ctx: ServiceContext) -> ResponseData:
    """Get the connection pool snapshot."""
    return success(ctx.datastore.pool_status())
