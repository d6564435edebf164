"""
Domain errors.

Every error carries a stable code, an HTTP status and a details dict so the
API layer can render it as {"error": {"code", "message", "details"}}.
"""
from typing import Any, Dict, List, Optional


class ApiError(Exception):
    """Base class for errors surfaced to API callers."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


# Validation

class InvalidParameterError(ApiError):
    code = "INVALID_PARAMETER"
    status_code = 400

    def __init__(self, message: str, parameter: Optional[str] = None):
        super().__init__(message, {"parameter": parameter} if parameter else None)
        self.parameter = parameter


class InvalidWebhookUrlError(ApiError):
    code = "INVALID_WEBHOOK_URL"
    status_code = 400

    def __init__(self, url: str):
        super().__init__("Webhook URL must be a valid HTTPS URL", {"url": url})
        self.url = url


class PageLimitExceededError(ApiError):
    code = "PAGE_LIMIT_EXCEEDED"
    status_code = 400

    def __init__(self, page_count: int, max_pages: int):
        super().__init__(
            f"Document has {page_count} pages, maximum is {max_pages}",
            {"page_count": page_count, "max_pages": max_pages},
        )
        self.page_count = page_count
        self.max_pages = max_pages


# Authorization / lookup

class AccountNotFoundError(ApiError):
    code = "ACCOUNT_NOT_FOUND"
    status_code = 403

    def __init__(self, account_id: str):
        super().__init__("Account not found", {"account_id": account_id})
        self.account_id = account_id


class JobNotFoundError(ApiError):
    code = "JOB_NOT_FOUND"
    status_code = 404

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", {"job_id": job_id})
        self.job_id = job_id


class WebhookNotFoundError(ApiError):
    code = "WEBHOOK_NOT_FOUND"
    status_code = 404

    def __init__(self, webhook_id: str):
        super().__init__(f"Webhook not found: {webhook_id}", {"webhook_id": webhook_id})
        self.webhook_id = webhook_id


class WebhookAccessDeniedError(ApiError):
    code = "WEBHOOK_ACCESS_DENIED"
    status_code = 403

    def __init__(self, webhook_id: str):
        super().__init__("You do not have access to this webhook", {"webhook_id": webhook_id})
        self.webhook_id = webhook_id


# Resource exhaustion

class RateLimitExceededError(ApiError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, limit: int, retry_after: int, window: str = "1 minute"):
        super().__init__(
            f"Rate limit of {limit} requests per minute exceeded",
            {"limit": limit, "window": window, "retry_after": retry_after, "type": "per_minute"},
        )
        self.limit = limit
        self.retry_after = retry_after


class QuotaExceededError(ApiError):
    code = "QUOTA_EXCEEDED"
    status_code = 403

    def __init__(self, current_usage: int, quota: int):
        super().__init__(
            "Usage quota exceeded for the current plan",
            {"current_usage": current_usage, "quota": quota},
        )
        self.current_usage = current_usage
        self.quota = quota


class InsufficientCreditsError(ApiError):
    code = "INSUFFICIENT_CREDITS"
    status_code = 402

    def __init__(self, required: Any, available: Any):
        super().__init__(
            "Insufficient credits to process this job",
            {"required": str(required), "available": str(available)},
        )
        self.required = required
        self.available = available


class WebhookLimitExceededError(ApiError):
    code = "WEBHOOK_LIMIT_EXCEEDED"
    status_code = 403

    def __init__(self, plan_id: str, plan_type: str, current_count: int, max_allowed: int):
        super().__init__(
            f"Webhook limit reached for plan {plan_id}",
            {
                "plan_id": plan_id,
                "type": plan_type,
                "current_count": current_count,
                "max_allowed": max_allowed,
            },
        )
        self.current_count = current_count
        self.max_allowed = max_allowed


# Timeouts

class QuickJobTimeoutError(ApiError):
    code = "QUICKJOB_TIMEOUT"
    status_code = 408

    def __init__(self, job_id: str, timeout_seconds: float):
        super().__init__(
            f"Job processing exceeded {timeout_seconds:g}-second timeout",
            {
                "job_id": job_id,
                "timeout_seconds": timeout_seconds,
                "suggestion": "use_long_job_endpoint",
            },
        )
        self.job_id = job_id


# Conflicts

class AlreadyExistsError(ApiError):
    code = "ALREADY_EXISTS"
    status_code = 409

    def __init__(self, collection: str, key: str):
        super().__init__(f"Record already exists: {collection}/{key}", {"key": key})
        self.collection = collection
        self.key = key


class LedgerConflictError(ApiError):
    """Another worker holds the idempotency claim for this ledger operation."""

    code = "LEDGER_CONFLICT"
    status_code = 409

    def __init__(self, key: str):
        super().__init__(f"Ledger operation already in progress: {key}", {"key": key})
        self.key = key


# Infrastructure

class StoreUnavailableError(ApiError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503

    def __init__(self, operation: str, reason: str):
        super().__init__(f"Store error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class QueueUnavailableError(ApiError):
    code = "SERVICE_UNAVAILABLE"
    status_code = 503

    def __init__(self, reason: str):
        super().__init__(f"Could not enqueue job: {reason}")


class RenderError(ApiError):
    code = "RENDER_FAILED"
    status_code = 500

    def __init__(self, message: str = "Document rendering failed"):
        super().__init__(message)


class ArtifactStorageError(ApiError):
    code = "STORAGE_ERROR"
    status_code = 500

    def __init__(self, object_key: str, reason: str):
        super().__init__(f"Failed to store {object_key}: {reason}", {"object_key": object_key})
        self.object_key = object_key


class PaymentConfigurationError(ApiError):
    code = "PAYMENTS_NOT_CONFIGURED"
    status_code = 500

    def __init__(self, missing: List[str]):
        super().__init__(f"Payment provider not configured: {', '.join(missing)}")
