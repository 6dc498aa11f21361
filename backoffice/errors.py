from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class _DomainError(ApiError):
    status_code_default = 500
    code_default = "INTERNAL_ERROR"
    message_default = "Request failed."

    def __init__(self, message: str | None = None):
        super().__init__(
            self.status_code_default,
            self.code_default,
            message or self.message_default,
        )


# Validation: surfaced immediately, never retried.
class ValidationFailed(_DomainError):
    status_code_default = 422
    code_default = "VALIDATION_ERROR"
    message_default = "Request is invalid."


class InvalidTimeFormat(ValidationFailed):
    code_default = "INVALID_TIME_FORMAT"
    message_default = "Invalid date or time format. Use YYYY-MM-DD and HH:MM."


class InvalidPayload(_DomainError):
    status_code_default = 400
    code_default = "INVALID_PAYLOAD"
    message_default = "Invalid request payload."


# Not found: terminal for the request.
class NotFoundError(_DomainError):
    status_code_default = 404
    code_default = "NOT_FOUND"
    message_default = "Resource not found."


class BookingNotFound(NotFoundError):
    code_default = "BOOKING_NOT_FOUND"
    message_default = "Booking not found."


class NoDataForPeriod(NotFoundError):
    code_default = "NO_DATA_FOR_PERIOD"
    message_default = "No hourly shifts or sessions found for this payroll period."


# Conflict: the caller should refresh and retry or pick another option.
class ConflictError(_DomainError):
    status_code_default = 409
    code_default = "CONFLICT"
    message_default = "Request conflicts with the current state."


class BookingNotMovable(ConflictError):
    code_default = "BOOKING_NOT_MOVABLE"
    message_default = "Cannot move table for this booking status."


class TableNoLongerAvailable(ConflictError):
    code_default = "TABLE_NO_LONGER_AVAILABLE"
    message_default = "This table is no longer available for the booking window. Please pick another."


class StaleAssignmentState(ConflictError):
    code_default = "STALE_ASSIGNMENT_STATE"
    message_default = "Current table assignment changed. Refresh and retry."


class ApprovalConflict(ConflictError):
    code_default = "APPROVAL_CONFLICT"
    message_default = "This payroll month was approved by another request. Refresh and retry."


class ReapprovalRequired(ConflictError):
    code_default = "REAPPROVAL_REQUIRED"
    message_default = "Payroll month changed since approval and must be re-approved."


class PayrollMonthLocked(ConflictError):
    code_default = "PAYROLL_MONTH_LOCKED"
    message_default = "Payroll month is approved. Its period can no longer be edited."


class StoreError(_DomainError):
    status_code_default = 500
    code_default = "STORE_ERROR"
    message_default = "Failed to read or write data."


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": message,
        "code": code,
        "request_id": get_request_id(request),
    }
    return JSONResponse(status_code=status_code, content=payload)
