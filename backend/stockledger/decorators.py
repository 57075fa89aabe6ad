# Overview: Request decorators for API routes.

from functools import wraps

from flask import current_app, request

from .errors import LedgerError
from .extensions import db


def handle_ledger_errors(f):
    """
    Map service-layer failures to JSON responses.

    - LedgerError subclasses -> their status_code and to_dict() body
    - Anything else is logged with its traceback and answered with 500

    The session is rolled back in both cases so a failed request never leaks
    a half-written transaction into the next one.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except LedgerError as e:
            db.session.rollback()
            if e.status_code >= 500:
                current_app.logger.warning("%s %s -> %s: %s", request.method, request.path, e.code, e.message)
            return e.to_dict(), e.status_code
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
            return {"error": "Internal server error", "code": "internal_error"}, 500

    return decorated_function
