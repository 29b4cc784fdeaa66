import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    """Base for every error the tracker reports with a stable error code."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        payload = {"success": False, "error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailed(TrackerError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFound(TrackerError):
    status_code = 404
    code = "NOT_FOUND"


class LinkNotFound(NotFound):
    code = "LINK_NOT_FOUND"


class CampaignNotFound(NotFound):
    code = "CAMPAIGN_NOT_FOUND"


class NoClickFound(NotFound):
    """No click was ever recorded for the tracking id (unknown visitor)."""

    code = "NO_CLICK_FOUND"


class Conflict(TrackerError):
    status_code = 409
    code = "CONFLICT"


class AliasTaken(Conflict):
    code = "ALIAS_TAKEN"


class WindowExpired(TrackerError):
    status_code = 400
    code = "ATTRIBUTION_WINDOW_EXPIRED"


class ExhaustedAttempts(TrackerError):
    status_code = 503
    code = "SHORT_CODE_EXHAUSTED"


class Unexpected(TrackerError):
    status_code = 500
    code = "UNEXPECTED"


async def tracker_error_handler(request: Request, exc: TrackerError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def datastore_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Datastore failure on %s %s", request.method, request.url.path)
    error = Unexpected("Datastore unavailable, retry later")
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = {"errors": [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]}
    error = ValidationFailed("Request validation failed", details)
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(TrackerError, tracker_error_handler)
    app.add_exception_handler(SQLAlchemyError, datastore_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
