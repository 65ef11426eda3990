# hrms_payroll/common/errors.py
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from hrms_payroll.common.http import fail
from hrms_payroll.extensions import db


class APIError(Exception):
    """Custom API Error class."""
    code = "API_ERROR"
    status_code = 400

    def __init__(self, message, code=None, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.payload = payload


# ---- boundary ----
class ValidationError(APIError):
    code = "VALIDATION_ERROR"
    status_code = 400


class TenantMismatchError(APIError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message="Forbidden", **kw):
        super().__init__(message, **kw)


class NotFoundError(APIError):
    code = "NOT_FOUND"
    status_code = 404


# ---- conflicts ----
class ConflictError(APIError):
    code = "CONFLICT"
    status_code = 409


class RunExistsError(ConflictError):
    code = "RUN_EXISTS"


class LeaveOverlapError(ConflictError):
    code = "LEAVE_OVERLAP"


class InvalidTransitionError(ConflictError):
    code = "INVALID_TRANSITION"


class YearNotFinalizedError(ConflictError):
    code = "YEAR_NOT_FINALIZED"


# ---- domain ----
class InsufficientBalanceError(APIError):
    code = "INSUFFICIENT_BALANCE"
    status_code = 400

    def __init__(self, requested, available, message=None):
        super().__init__(
            message or f"Insufficient balance. Available: {available}, Requested: {requested}",
            payload={"requested": float(requested), "available": float(available)},
        )
        self.requested = requested
        self.available = available


class InvalidAgeError(APIError):
    code = "INVALID_AGE"
    status_code = 400


# Builder failures: the run marks the item failed instead of aborting.
class ItemFailure(APIError):
    status_code = 422


class ConfigurationError(ItemFailure):
    code = "CONFIGURATION_ERROR"


class MissingRateTableError(ItemFailure):
    code = "MISSING_RATE_TABLE"


class DataInconsistencyError(ItemFailure):
    code = "DATA_INCONSISTENCY"


class DeadlineExceededError(APIError):
    code = "DEADLINE_EXCEEDED"
    status_code = 503


def register_error_handlers(app):
    @app.errorhandler(APIError)
    def _api_error(e: APIError):
        db.session.rollback()
        return fail(e.message, status=e.status_code, code=e.code, detail=e.payload)

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _dup(e: IntegrityError):
        db.session.rollback()
        return fail("Duplicate or FK constraint failed", status=409, code="CONSTRAINT_ERROR")

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        db.session.rollback()
        return fail("Internal server error", status=500)
