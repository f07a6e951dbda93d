"""
Domain error taxonomy.

Refusals that callers branch on (allocation, consent replay, reconciliation
mismatches) are returned as typed results. These exceptions cover input
problems and refusals that end the request.
"""
from typing import List, Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class LendingError(Exception):
    """Base class for domain errors"""
    code = "lending_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.reasons = reasons or []


class ValidationError(LendingError):
    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(LendingError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class IneligibleError(LendingError):
    code = "ineligible"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ConsentExpiredOrInvalid(LendingError):
    code = "consent_expired_or_invalid"
    status_code = status.HTTP_410_GONE


class InvalidStateTransition(LendingError):
    code = "invalid_state_transition"
    status_code = status.HTTP_409_CONFLICT


class PeriodClosed(LendingError):
    code = "period_closed"
    status_code = status.HTTP_409_CONFLICT


class CapacityExhausted(LendingError):
    code = "capacity_exhausted"
    status_code = status.HTTP_409_CONFLICT


class ConcurrencyConflict(LendingError):
    code = "concurrency_conflict"
    status_code = status.HTTP_409_CONFLICT


class DuplicateRegistration(LendingError):
    """Raised internally when the register row already exists; callers get the row back"""
    code = "duplicate_registration"
    status_code = status.HTTP_200_OK


class ReconciliationMismatch(LendingError):
    """An actual deduction that cannot be matched to any schedule row"""
    code = "reconciliation_mismatch"
    status_code = status.HTTP_200_OK


async def lending_error_handler(request: Request, exc: LendingError) -> JSONResponse:
    """Render domain errors as {detail, code[, reasons]}"""
    logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    content = {"detail": exc.message, "code": exc.code}
    if exc.reasons:
        content["reasons"] = exc.reasons
    return JSONResponse(status_code=exc.status_code, content=content)
