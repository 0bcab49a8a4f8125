"""
Structured JSON logging for the API and the Celery worker.

Every record carries timestamp, level, logger name and service. Event helpers
add an `event` name plus whichever of these apply:
- user_id
- subject
- quota_type
- duration_ms

Usage:
    from metering.utils.logging import configure_logging, log_usage_tracked

    configure_logging('metering-api', 'INFO')
    log_usage_tracked(logger, subject='user:123', event_type='api_call', quantity=1)
"""
import logging
import sys
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Configures the root logger once per process."""

    _service_name = None
    _configured = False

    @classmethod
    def configure(cls, service_name: str, log_level: str = "INFO"):
        """
        Configure structured JSON logging for the application.

        Args:
            service_name: Service identifier (metering-api or metering-worker)
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        if cls._configured:
            return

        cls._service_name = service_name

        root_logger = logging.getLogger()
        root_logger.handlers = []

        formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s',
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            json_ensure_ascii=False
        )

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        class ServiceFilter(logging.Filter):
            def filter(self, record):
                record.service = cls._service_name
                return True

        handler.addFilter(ServiceFilter())

        root_logger.addHandler(handler)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
        cls._configured = True


def _build_log_extra(
    event: str,
    user_id: Optional[str] = None,
    subject: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """Assemble `extra` fields, dropping the optional ones that are unset."""
    extra = {
        "event": event,
        **kwargs
    }

    if user_id:
        extra["user_id"] = user_id
    if subject:
        extra["subject"] = subject
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


def log_usage_tracked(
    logger: logging.Logger,
    subject: str,
    event_type: str,
    quantity: int,
    usage_event_id: Optional[str] = None,
    current_usage: Optional[int] = None,
    limit_value: Optional[int] = None,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """
    Log a metered usage event.

    Args:
        logger: Logger instance
        subject: Subject key (required)
        event_type: Usage event type (required)
        quantity: Units recorded (required)
        usage_event_id: Id of the stored event
        current_usage: Quota usage after the increment, when a quota applies
        limit_value: Quota limit, when a quota applies
        duration_ms: Optional duration in milliseconds
    """
    extra = _build_log_extra(
        event="usage_tracked",
        subject=subject,
        duration_ms=duration_ms,
        event_type=event_type,
        quantity=quantity,
        **kwargs
    )
    if usage_event_id:
        extra["usage_event_id"] = usage_event_id
    if current_usage is not None:
        extra["current_usage"] = current_usage
        extra["limit_value"] = limit_value

    logger.info(f"Usage tracked: {event_type} x{quantity} for {subject}", extra=extra)


def log_quota_checked(
    logger: logging.Logger,
    subject: str,
    quota_type: str,
    requested_amount: int,
    allowed: bool,
    **kwargs
):
    extra = _build_log_extra(
        event="quota_checked",
        subject=subject,
        quota_type=quota_type,
        requested_amount=requested_amount,
        allowed=allowed,
        **kwargs
    )
    level = logging.INFO if allowed else logging.WARNING
    logger.log(level, f"Quota check {quota_type} for {subject}: {'allowed' if allowed else 'denied'}", extra=extra)


def log_alert_triggered(
    logger: logging.Logger,
    subject: str,
    alert_type: str,
    quota_type: Optional[str] = None,
    alert_id: Optional[str] = None,
    utilization: Optional[float] = None,
    **kwargs
):
    """
    Log creation of a billing alert.

    Args:
        logger: Logger instance
        subject: Subject key (required)
        alert_type: Alert type (required)
        quota_type: Quota that crossed a threshold
        alert_id: Id of the stored alert
        utilization: Utilization percentage at trigger time
    """
    extra = _build_log_extra(
        event="billing_alert_triggered",
        subject=subject,
        alert_type=alert_type,
        **kwargs
    )
    if quota_type:
        extra["quota_type"] = quota_type
    if alert_id:
        extra["alert_id"] = alert_id
    if utilization is not None:
        extra["utilization"] = round(utilization, 2)

    logger.warning(f"Billing alert {alert_type} for {subject}", extra=extra)


def log_quotas_reset(
    logger: logging.Logger,
    reset_count: int,
    subject: Optional[str] = None,
    reset_period: Optional[str] = None,
    user_id: Optional[str] = None,
    dry_run: bool = False,
    **kwargs
):
    extra = _build_log_extra(
        event="quotas_reset",
        user_id=user_id,
        subject=subject,
        reset_count=reset_count,
        dry_run=dry_run,
        **kwargs
    )
    if reset_period:
        extra["reset_period"] = reset_period

    prefix = "DRY RUN: " if dry_run else ""
    logger.info(f"{prefix}Reset {reset_count} quotas", extra=extra)


def configure_logging(service_name: str, log_level: str = "INFO"):
    """Configure logging (alias for StructuredLogger.configure)."""
    StructuredLogger.configure(service_name, log_level)
