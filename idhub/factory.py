"""Application factory for the idhub service."""

from typing import Any, Mapping, Optional

from flask import Flask, Response, jsonify
from werkzeug.exceptions import HTTPException, BadRequest, \
    MethodNotAllowed, InternalServerError, NotFound

from . import app_logging
from .auth import Auth
from .context import ServiceContext
from .controllers import FAILED
from .routes import api


def create_web_app(config: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Initialize and configure the idhub application.

    Parameters
    ----------
    config : dict
        Overrides for the values in :mod:`idhub.config`.

    """
    app = Flask('idhub')
    app.config.from_pyfile('config.py')
    if config:
        app.config.update(config)
    app_logging.setup_logger(app.config['LOGLEVEL'])

    context = ServiceContext.from_config(app.config)
    context.init_app(app)
    Auth(app)   # Sets request.auth from the session cookie.
    app.register_blueprint(api.blueprint)

    if app.config['CREATE_DB']:
        context.accounts.ensure_schema()

    register_error_handlers(app)
    return app


def register_error_handlers(app: Flask) -> None:
    """Register error handlers for the Flask app."""
    app.errorhandler(BadRequest)(jsonify_exception)
    app.errorhandler(InternalServerError)(jsonify_exception)
    app.errorhandler(NotFound)(jsonify_exception)
    app.errorhandler(MethodNotAllowed)(jsonify_exception)


def jsonify_exception(error: HTTPException) -> Response:
    """Render exceptions in the failure envelope."""
    exc_resp = error.get_response()
    response: Response = jsonify(code=FAILED, err=error.description)
    response.status_code = exc_resp.status_code
    return response
