from fastapi import Request
from fastapi.responses import JSONResponse


class MonitorError(Exception):
    """Base exception for monitor API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        status: int = 500,
        details: dict | None = None,
    ):
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        result = {
            "error": {
                "code": self.code,
                "message": self.message,
                "status": self.status,
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


class NotFoundError(MonitorError):
    def __init__(self, message: str = "Resource not found.", details: dict | None = None):
        super().__init__(code="not_found", message=message, status=404, details=details)


class InvalidPeriodError(MonitorError):
    def __init__(self, days: int, details: dict | None = None):
        super().__init__(
            code="invalid_period",
            message="The 'days' parameter must be between 1 and 90.",
            status=400,
            details=details or {"days": days},
        )


class ReportNotReadyError(MonitorError):
    def __init__(self, client_id: str, details: dict | None = None):
        super().__init__(
            code="report_not_ready",
            message=f"No downtime report is available yet for client '{client_id}'.",
            status=503,
            details=details or {"suggestion": "Wait for the next refresh cycle or trigger a recalculation."},
        )


class UpstreamError(MonitorError):
    def __init__(self, message: str = "Monitoring backend is unavailable.", details: dict | None = None):
        super().__init__(code="upstream_unavailable", message=message, status=502, details=details)


class PersistenceError(MonitorError):
    def __init__(self, message: str = "Failed to persist downtime report.", details: dict | None = None):
        super().__init__(code="persistence_failed", message=message, status=500, details=details)


async def monitor_error_handler(request: Request, exc: MonitorError) -> JSONResponse:
    """Global exception handler for MonitorError and subclasses."""
    return JSONResponse(status_code=exc.status, content=exc.to_dict())
