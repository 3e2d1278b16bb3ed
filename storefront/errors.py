# storefront/errors.py
import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .extensions import db, jwt
from .utils.api import api_error

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


def _json(message, status):
    r = jsonify(api_error(message))
    r.status_code = status
    return r


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        return _json(e.message, e.status_code)

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        return _json(str(e), 422)

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(e):
        db.session.rollback()
        logger.exception("database error")
        return _json("The store is temporarily unavailable, please try again", 503)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return _json(e.description or e.name, e.code or 500)

    @jwt.unauthorized_loader
    def missing_token(reason):
        return _json(reason, 401)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return _json(reason, 401)

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return _json("Token has expired", 401)
