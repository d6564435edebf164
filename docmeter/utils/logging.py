"""
Production logging utility for structured JSON logging.

Provides event-specific logging functions with mandatory fields:
- timestamp (ISO8601)
- level
- service
- event

Optional fields (included when applicable):
- job_id
- owner_id
- webhook_id
- duration_ms

Usage:
    from docmeter.utils.logging import configure_logging, log_job_started

    configure_logging('docmeter-api', 'INFO')
    log_job_started(logger, job_id='123', owner_id='acct-1', job_type='quick')
"""
import logging
import sys
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Structured JSON logger with mandatory fields."""

    _service_name = None
    _configured = False

    @classmethod
    def configure(cls, service_name: str, log_level: str = "INFO"):
        """
        Configure structured JSON logging for the application.

        Args:
            service_name: Service identifier (docmeter-api or docmeter-worker)
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        if cls._configured:
            return

        cls._service_name = service_name

        root_logger = logging.getLogger()
        root_logger.handlers = []

        formatter = jsonlogger.JsonFormatter(
            '%(timestamp)s %(levelname)s %(name)s %(message)s',
            timestamp=True,
            json_ensure_ascii=False
        )

        # Console handler (container logs)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        root_logger.addHandler(handler)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        class ServiceFilter(logging.Filter):
            def filter(self, record):
                record.service = cls._service_name
                return True

        handler.addFilter(ServiceFilter())
        cls._configured = True


def _build_log_extra(
    event: str,
    job_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Build extra fields for structured logging.

    Args:
        event: Event name (mandatory)
        job_id: Optional job ID
        owner_id: Optional account ID
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields

    Returns:
        Dictionary of extra fields
    """
    extra = {
        "event": event,
        **kwargs
    }

    if job_id:
        extra["job_id"] = job_id
    if owner_id:
        extra["owner_id"] = owner_id
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


# Job event functions

def log_job_started(
    logger: logging.Logger,
    job_id: str,
    owner_id: str,
    job_type: Optional[str] = None,
    **kwargs
):
    """Log job start event."""
    extra = _build_log_extra(
        event="job_started",
        job_id=job_id,
        owner_id=owner_id,
        **kwargs
    )
    if job_type:
        extra["job_type"] = job_type

    logger.info(f"Job started: {job_id}", extra=extra)


def log_job_completed(
    logger: logging.Logger,
    job_id: str,
    owner_id: str,
    duration_ms: float,
    job_type: Optional[str] = None,
    pages: Optional[int] = None,
    **kwargs
):
    """
    Log job completion event.

    Args:
        logger: Logger instance
        job_id: Job ID (required)
        owner_id: Account ID (required)
        duration_ms: Duration in milliseconds (required)
        job_type: Optional job type (quick, long)
        pages: Optional rendered page count
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="job_completed",
        job_id=job_id,
        owner_id=owner_id,
        duration_ms=duration_ms,
        **kwargs
    )
    if job_type:
        extra["job_type"] = job_type
    if pages is not None:
        extra["pages"] = pages

    logger.info(f"Job completed: {job_id}", extra=extra)


def log_job_failed(
    logger: logging.Logger,
    job_id: str,
    owner_id: Optional[str] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
    job_type: Optional[str] = None,
    include_traceback: bool = True,
    **kwargs
):
    """
    Log job failure event.

    Args:
        logger: Logger instance
        job_id: Job ID (required)
        owner_id: Optional account ID
        duration_ms: Optional duration in milliseconds
        error: Error message
        job_type: Optional job type
        include_traceback: Whether to include stack trace (default: True for errors)
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="job_failed",
        job_id=job_id,
        owner_id=owner_id,
        duration_ms=duration_ms,
        **kwargs
    )
    if job_type:
        extra["job_type"] = job_type
    if error:
        extra["error"] = str(error)

    message = f"Job failed: {job_id}"
    if error:
        message += f" - {error}"

    if include_traceback:
        exc_info = sys.exc_info()
        if exc_info[0] is not None:
            logger.error(message, extra=extra, exc_info=exc_info)
        else:
            logger.error(message, extra=extra)
    else:
        logger.error(message, extra=extra)


# Ledger event functions

def log_credit_deduction(
    logger: logging.Logger,
    job_id: str,
    owner_id: str,
    amount: Any,
    outcome: str,
    transaction_id: Optional[str] = None,
    **kwargs
):
    """
    Log a credit deduction attempt.

    Args:
        logger: Logger instance
        job_id: Job being billed
        owner_id: Account being charged
        amount: Requested amount
        outcome: free_tier, free_credit, balance, duplicate or insufficient
        transaction_id: Ledger entry written, if any
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="credit_deduction",
        job_id=job_id,
        owner_id=owner_id,
        amount=str(amount),
        outcome=outcome,
        **kwargs
    )
    if transaction_id:
        extra["transaction_id"] = transaction_id

    if outcome == "insufficient":
        logger.warning(f"Credit deduction rejected for job {job_id}: insufficient credits", extra=extra)
    else:
        logger.info(f"Credit deduction for job {job_id}: {outcome}", extra=extra)


# Webhook event functions

def log_webhook_delivery(
    logger: logging.Logger,
    webhook_id: Optional[str],
    event_type: str,
    status: str,
    attempt: int,
    job_id: Optional[str] = None,
    status_code: Optional[int] = None,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
    **kwargs
):
    """
    Log one webhook delivery attempt.

    Args:
        logger: Logger instance
        webhook_id: Subscription ID, None for per-job callbacks
        event_type: Event delivered (job.completed, ...)
        status: success, failed or timeout
        attempt: 1-based attempt number
        job_id: Optional job ID
        status_code: HTTP status, 0 for network errors
        duration_ms: Request duration
        error: Optional error message
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="webhook_delivery",
        job_id=job_id,
        duration_ms=duration_ms,
        event_type=event_type,
        status=status,
        attempt=attempt,
        **kwargs
    )
    if webhook_id:
        extra["webhook_id"] = webhook_id
    if status_code is not None:
        extra["status_code"] = status_code
    if error:
        extra["error"] = str(error)

    message = f"Webhook {event_type} attempt {attempt}: {status}"
    if status == "success":
        logger.info(message, extra=extra)
    else:
        logger.warning(message, extra=extra)


def configure_logging(service_name: str, log_level: str = "INFO"):
    """Configure logging (alias for StructuredLogger.configure)."""
    StructuredLogger.configure(service_name, log_level)
