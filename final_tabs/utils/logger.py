"""
JSON logging for the fetch, capture and posting stages.

Records go to stdout locally. Inside Kubernetes they go to
/var/log/final-tabs/app.log, with warnings and errors mirrored to stderr.
"""

import logging
import os
import sys
import warnings
from typing import Any, Optional

from aws_lambda_powertools import Logger


class FinalTabsLogger:
    """
    Centralized logger for Final Tabs with structured logging.

    Wraps a Powertools Logger so every module logs JSON records with the same
    service name and serializer.
    """

    LOG_FILE_PATH = "/var/log/final-tabs/app.log"

    def __init__(self, service_name: str = "final-tabs"):
        self.service_name = service_name
        self.is_kubernetes = self._detect_kubernetes()

        self._logger = Logger(
            service=service_name,
            level=os.getenv("LOG_LEVEL", "INFO"),
            use_datetime_directive=True,
            json_serializer=self._custom_serializer,
        )

        self._configure_handler()

    @staticmethod
    def _detect_kubernetes() -> bool:
        """Return True when running inside a Kubernetes pod."""
        return os.getenv("KUBERNETES_SERVICE_HOST") is not None

    def _configure_handler(self) -> None:
        """
        Configure the log handler based on environment.

        In Kubernetes the JSON records go to a file and warnings are mirrored
        to stderr; locally the default stdout handler is kept.
        """
        if not self.is_kubernetes:
            return

        try:
            os.makedirs(os.path.dirname(self.LOG_FILE_PATH), exist_ok=True)

            underlying_logger = logging.getLogger(self._logger.name)
            underlying_logger.handlers.clear()

            file_handler = logging.FileHandler(self.LOG_FILE_PATH)
            file_handler.setFormatter(self._logger._get_log_formatter())
            underlying_logger.addHandler(file_handler)

            stderr_handler = logging.StreamHandler(sys.stderr)
            stderr_handler.setLevel(logging.WARNING)
            stderr_handler.setFormatter(logging.Formatter("%(levelname)s - %(message)s"))
            underlying_logger.addHandler(stderr_handler)

        except (PermissionError, OSError) as e:
            warnings.warn(
                f"Cannot write to {self.LOG_FILE_PATH}: {e}. Falling back to stdout.",
                stacklevel=2,
            )

    def get_logger(self) -> Logger:
        return self._logger

    def _context(self, operation: str, **fields: Any) -> dict[str, Any]:
        context = {"operation": operation, "service": self.service_name}
        context.update({key: value for key, value in fields.items() if value is not None})
        return context

    def log_run_start(self, config: dict[str, Any]) -> None:
        """Log the start of an autopost run with its non-secret configuration."""
        self._logger.info("Starting autopost run", extra=self._context("run_start", config=config))

    def log_run_complete(self, summary: dict[str, Any]) -> None:
        self._logger.info(
            "Autopost run completed", extra=self._context("run_complete", summary=summary)
        )

    def log_api_call(
        self,
        endpoint: str,
        method: str,
        status_code: Optional[int] = None,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Log one provider request.

        Transport errors and 4xx/5xx responses are logged at error level.

        Args:
            endpoint: Provider endpoint name, e.g. ``scoreboard``
            method: HTTP method used
            status_code: HTTP response status code
            duration_ms: Request duration in milliseconds
            error: Error message if the request failed
        """
        context = self._context(
            "api_call",
            endpoint=endpoint,
            method=method,
            status_code=status_code,
            duration_ms=duration_ms,
            error=error,
        )
        if error or (status_code and status_code >= 400):
            self._logger.error(f"Provider request failed: {method} {endpoint}", extra=context)
        else:
            self._logger.info(f"Provider request ok: {method} {endpoint}", extra=context)

    def log_browser_operation(
        self,
        operation: str,
        success: bool,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> None:
        context = self._context(
            "browser_operation",
            browser_operation=operation,
            success=success,
            duration_ms=duration_ms,
            error=error,
        )
        if success:
            self._logger.info(f"Browser {operation} ok", extra=context)
        else:
            self._logger.error(f"Browser {operation} failed", extra=context)

    @staticmethod
    def _custom_serializer(obj: Any) -> Any:
        """Fallback JSON encoding; image bytes are summarized, never dumped."""
        if isinstance(obj, (bytes, bytearray)):
            return f"<{len(obj)} bytes>"
        if hasattr(obj, "isoformat"):
            return obj.isoformat()
        if hasattr(obj, "model_dump"):
            return obj.model_dump(exclude={"rendered_image", "image"})
        return vars(obj) if hasattr(obj, "__dict__") else str(obj)


# Shared by every module via get_logger()
final_tabs_logger = FinalTabsLogger()


def get_logger() -> Logger:
    return final_tabs_logger.get_logger()
