"""
Centralized Error Handling Module for PayCore

This module provides:
- Custom exception hierarchy
- Payroll-specific input, conflict and upstream errors
- Standardized error responses
- Error logging and tracking
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure logging
logger = logging.getLogger("paycore.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_PERIOD = "INVALID_PERIOD"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    EMPTY_BATCH = "EMPTY_BATCH"
    INVALID_ACTOR = "INVALID_ACTOR"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    PAYSLIP_NOT_FOUND = "PAYSLIP_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    IMMUTABLE_PAYSLIP = "IMMUTABLE_PAYSLIP"

    # Business Logic Errors (422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NO_ACTIVE_COMPENSATION = "NO_ACTIVE_COMPENSATION"
    NOT_DELIVERABLE = "NOT_DELIVERABLE"

    # External Service Errors (502/503)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    UPSTREAM_SERVICE_ERROR = "UPSTREAM_SERVICE_ERROR"
    EMAIL_SERVICE_ERROR = "EMAIL_SERVICE_ERROR"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidPeriodError(ValidationException):
    """Pay period month/year out of range"""

    def __init__(self, month: Any, year: Any, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid pay period: {month}/{year}. Month must be 1-12 and year 1900-9999.",
            field="period",
            code=ErrorCode.INVALID_PERIOD,
            details={"month": month, "year": year},
        )


class InvalidDateRangeException(ValidationException):
    """Invalid date range"""

    def __init__(self, start_date: str, end_date: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}. Start date must be before end date.",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": start_date, "end_date": end_date},
        )


class EmptyBatchError(ValidationException):
    """Payroll calculation requested for no employees"""

    def __init__(self, message: str = "At least one employee is required to calculate payroll"):
        super().__init__(
            message=message,
            field="employee_ids",
            code=ErrorCode.EMPTY_BATCH,
        )


class InvalidActorError(ValidationException):
    """Approver / actor reference does not resolve to an employee"""

    def __init__(self, actor_id: Any, field: str = "approver_id"):
        super().__init__(
            message=f"'{actor_id}' is not a valid actor reference",
            field=field,
            code=ErrorCode.INVALID_ACTOR,
            details={"actor_id": actor_id},
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, int]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id is not None:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class PayslipNotFoundError(NotFoundException):
    """Payslip not found"""

    def __init__(self, payslip_id: Optional[int] = None, message: Optional[str] = None):
        super().__init__(
            resource_type="Payslip",
            resource_id=payslip_id,
            message=message,
            code=ErrorCode.PAYSLIP_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if resource_type:
            _details["resource_type"] = resource_type
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details,
        )


class ImmutablePayslipError(ConflictException):
    """A PAID or CANCELLED payslip was targeted by a mutating operation"""

    def __init__(
        self,
        employee_id: int,
        month: int,
        year: int,
        payslip_status: str,
        payslip_id: Optional[int] = None,
    ):
        self.employee_id = employee_id
        self.month = month
        self.year = year
        self.payslip_status = payslip_status
        state = "paid" if payslip_status == "PAID" else "cancelled"
        super().__init__(
            message=(
                f"The payslip for employee {employee_id} ({month:02d}/{year}) "
                f"is already {state} and cannot be modified"
            ),
            resource_type="Payslip",
            code=ErrorCode.IMMUTABLE_PAYSLIP,
            details={
                "payslip_id": payslip_id,
                "employee_id": employee_id,
                "pay_period_month": month,
                "pay_period_year": year,
                "status": payslip_status,
            },
        )


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=_details,
        )


class InvalidTransitionError(BusinessRuleException):
    """Lifecycle action not permitted from the payslip's current status"""

    def __init__(self, from_status: str, action: str, payslip_id: Optional[int] = None):
        self.from_status = from_status
        self.action = action
        super().__init__(
            message=f"Cannot {action.lower()} a payslip in {from_status} status",
            rule="PAYSLIP_STATE_MACHINE",
            code=ErrorCode.INVALID_TRANSITION,
            details={"from": from_status, "action": action, "payslip_id": payslip_id},
        )


class CompensationNotResolvedError(BusinessRuleException):
    """Employee has no active compensation record for the period"""

    def __init__(self, employee_id: int, month: int, year: int):
        super().__init__(
            message=f"Employee {employee_id} has no active compensation record for {month:02d}/{year}",
            rule="ACTIVE_COMPENSATION_REQUIRED",
            code=ErrorCode.NO_ACTIVE_COMPENSATION,
            details={"employee_id": employee_id, "pay_period_month": month, "pay_period_year": year},
        )


class PayslipNotDeliverableError(BusinessRuleException):
    """Payslip email requested before the payslip was processed"""

    def __init__(self, payslip_id: int, payslip_status: str):
        super().__init__(
            message=f"Payslip {payslip_id} is {payslip_status}; only PROCESSED or PAID payslips can be emailed",
            rule="DELIVERABLE_STATUS_REQUIRED",
            code=ErrorCode.NOT_DELIVERABLE,
            details={"payslip_id": payslip_id, "status": payslip_status},
        )


# ============================================================================
# External Service Exceptions
# ============================================================================

class ExternalServiceException(AppException):
    """External service error exception"""

    def __init__(
        self,
        service_name: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        _details["service"] = service_name
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=_details,
            original_error=original_error,
        )


class UpstreamServiceError(ExternalServiceException):
    """HR collaborator unavailable or returned unusable data"""

    def __init__(
        self,
        service_name: str,
        message: str,
        reason: str = "UPSTREAM_FAILURE",
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.service_name = service_name
        self.reason = reason
        _details = dict(details or {})
        _details["reason"] = reason
        super().__init__(
            service_name=service_name,
            message=f"{service_name} error: {message}",
            code=ErrorCode.UPSTREAM_SERVICE_ERROR,
            original_error=original_error,
            details=_details,
        )


class NotificationDeliveryError(ExternalServiceException):
    """Notification dispatcher failed to accept the payslip email"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            service_name="notification-service",
            message=f"Payslip email could not be sent: {message}",
            code=ErrorCode.EMAIL_SERVICE_ERROR,
            original_error=original_error,
        )


# ============================================================================
# Error Response Helpers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    # Map status codes to error codes
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
        503: ErrorCode.EXTERNAL_SERVICE_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            # Concurrent commit for the same employee/period; re-query before retrying
            error_message = "A payslip for this employee and period already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================================================
# Error Tracking Middleware
# ============================================================================

class ErrorTrackingMiddleware:
    """Middleware for tracking and logging all errors"""

    def __init__(self, app: FastAPI):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            logger.error(
                f"Request failed: {scope.get('path', 'unknown')}",
                extra={
                    "path": scope.get("path"),
                    "method": scope.get("method"),
                    "exception_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise


__all__ = [
    # Base
    "AppException",
    "ErrorCode",

    # Validation
    "ValidationException",
    "InvalidPeriodError",
    "InvalidDateRangeException",
    "EmptyBatchError",
    "InvalidActorError",

    # Resource
    "NotFoundException",
    "PayslipNotFoundError",
    "ConflictException",
    "ImmutablePayslipError",

    # Business Logic
    "BusinessRuleException",
    "InvalidTransitionError",
    "CompensationNotResolvedError",
    "PayslipNotDeliverableError",

    # External Services
    "ExternalServiceException",
    "UpstreamServiceError",
    "NotificationDeliveryError",

    # Handlers
    "setup_exception_handlers",
    "create_error_response",
    "ErrorTrackingMiddleware",
]
