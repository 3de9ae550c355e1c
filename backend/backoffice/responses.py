# JSON error responses and query-string helpers shared by the API blueprints.

from flask import current_app, jsonify

from .errors import BackofficeError
from .extensions import db
from .validation import coerce_int, optional_datetime


def error_response(exc: BackofficeError):
    db.session.rollback()
    return jsonify(exc.to_dict()), exc.status_code


def internal_error_response(exc: Exception, message: str):
    """Log with traceback; exception text is only returned when EXPOSE_ERROR_DETAILS is on."""
    db.session.rollback()
    current_app.logger.exception(message)
    body = {"error": "Internal server error"}
    if current_app.config.get("EXPOSE_ERROR_DETAILS"):
        body["detail"] = f"{type(exc).__name__}: {exc}"
    return jsonify(body), 500


def int_arg(args, name: str, *, minimum: int | None = None) -> int | None:
    value = args.get(name)
    if value is None or value == "":
        return None
    return coerce_int(value, name, minimum=minimum)


def datetime_arg(args, name: str):
    return optional_datetime(args.get(name), name)
