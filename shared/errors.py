"""
Shared error handling for the module access layer.

Every error raised by a service derives from AccessLayerException and
carries the HTTP status it maps to, so route handlers never translate
errors by hand.
"""

from typing import Dict, Any, List, Optional

from opentelemetry import trace
from pydantic import BaseModel, ConfigDict


class ErrorResponse(BaseModel):
    """Standard error response format.

    Exception details are flattened into the top level of the body so
    clients can read structured fields (e.g. ``missing_dependencies``)
    without unwrapping.
    """

    model_config = ConfigDict(extra="allow")

    error: str
    code: str
    trace_id: Optional[str] = None


class AccessLayerException(Exception):
    """Base exception for access layer services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            error=self.message,
            code=self.code,
            trace_id=trace_id,
            **self.details
        )


class ValidationError(AccessLayerException):
    """Malformed identifier, bad enum value or bad date range."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(AccessLayerException):
    """Caller lacks the role required for the operation."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ModuleAccessDenied(AuthorizationError):
    """Organization is not permitted to use a feature module."""

    def __init__(self, module_key: str, reason: str, org_id: Optional[str], message: Optional[str] = None):
        super().__init__(
            message or f'Module "{module_key}" is not enabled for your organization',
            details={"reason": reason, "module_key": module_key, "org_id": org_id}
        )
        self.code = "MODULE_ACCESS_DENIED"
        self.module_key = module_key
        self.reason = reason
        self.org_id = org_id


class NotFoundError(AccessLayerException):
    """Unknown module or organization."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class DependencyViolation(AccessLayerException):
    """An enable/disable would break the module dependency graph."""

    status_code = 409

    def __init__(self, message: str, module_key: str,
                 missing_dependencies: Optional[List[str]] = None,
                 dependent_modules: Optional[List[Dict[str, str]]] = None):
        details: Dict[str, Any] = {"module_key": module_key}
        if missing_dependencies is not None:
            details["missing_dependencies"] = missing_dependencies
        if dependent_modules is not None:
            details["dependent_modules"] = dependent_modules
        super().__init__("DEPENDENCY_VIOLATION", message, details)
        self.module_key = module_key
        self.missing_dependencies = missing_dependencies or []
        self.dependent_modules = dependent_modules or []


class ServiceError(AccessLayerException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class CatalogCycleError(ServiceError):
    """The module dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]):
        super().__init__(
            f"Module dependency cycle detected: {' -> '.join(cycle)}",
            details={"cycle": cycle}
        )
        self.code = "CATALOG_CYCLE"
        self.cycle = cycle


class BackendError(AccessLayerException):
    """The backing store failed to answer a query."""

    status_code = 500

    def __init__(self, message: str = "Backend error", details: Optional[Dict[str, Any]] = None,
                 code: str = "BACKEND_ERROR"):
        super().__init__(code, message, details)


class BackendUnavailable(BackendError):
    """A required storage relation or function is missing."""

    status_code = 503

    def __init__(self, message: str = "Backend unavailable", details: Optional[Dict[str, Any]] = None,
                 code: str = "BACKEND_UNAVAILABLE"):
        super().__init__(message, details, code=code)


class PlatformCatalogUnavailable(BackendUnavailable):
    """Platform admin lookup failed; never treated as "not an admin"."""

    def __init__(self, message: str = "Platform entitlement tables are not available",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="PLATFORM_CATALOG_UNAVAILABLE")
