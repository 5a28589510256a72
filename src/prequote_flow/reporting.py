"""Error observability for non-critical failures."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from .config.settings import MonitoringSettings


logger = logging.getLogger(__name__)


class ErrorReporter(ABC):
    """Sink for failures the flow absorbs instead of surfacing."""

    @abstractmethod
    def report(self, error: BaseException, context: Optional[dict[str, Any]] = None) -> None:
        pass


class LoggingErrorReporter(ErrorReporter):
    """Reports errors to the application log."""

    def report(self, error: BaseException, context: Optional[dict[str, Any]] = None) -> None:
        logger.error(
            "[REPORT] %s: %s %s",
            type(error).__name__,
            error,
            context or {},
            exc_info=(type(error), error, error.__traceback__),
        )


class SentryErrorReporter(ErrorReporter):
    """Sends absorbed failures to Sentry with the flow context attached."""

    def report(self, error: BaseException, context: Optional[dict[str, Any]] = None) -> None:
        with sentry_sdk.new_scope() as scope:
            if context:
                scope.set_context("prequote_flow", context)
                for key in ("side_effect", "stage"):
                    if key in context:
                        scope.set_tag(key, context[key])
            event_id = sentry_sdk.capture_exception(error)
        logger.warning("[REPORT] %s sent to Sentry (%s)", type(error).__name__, event_id)


def setup_error_reporting(settings: MonitoringSettings) -> ErrorReporter:
    """Initialise Sentry when a DSN is configured and pick the reporter."""
    if not settings.is_configured:
        logger.info("[REPORT] No Sentry DSN; reporting errors to the log")
        return LoggingErrorReporter()

    sentry_logging = LoggingIntegration(
        level=logging.INFO,
        event_level=logging.ERROR,
    )
    sentry_sdk.init(
        dsn=settings.dsn,
        environment=settings.environment,
        integrations=[sentry_logging],
        traces_sample_rate=settings.traces_sample_rate,
    )
    logger.info("[REPORT] Sentry error reporting enabled (%s)", settings.environment)
    return SentryErrorReporter()
