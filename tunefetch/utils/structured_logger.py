"""
Structured logging system for batch analysis and debugging.
Writes JSON-lines records alongside the normal console log.
"""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from tunefetch.models.job import BatchResult, ProgressEvent


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable records.

    Usage:
        logger = StructuredLogger("tunefetch", log_dir=Path("logs"))
        logger.info("job_completed", job_id="a1b2c3", retries=1)
    """

    def __init__(
        self,
        name: str,
        log_dir: Optional[Path] = None,
        enable_console: bool = True,
    ):
        """
        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_console: Enable console output
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = log_dir is not None
        self.enable_console = enable_console
        self.path: Optional[Path] = None

        self._logger = logging.getLogger(name)

        self._json_file = None
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.path = log_dir / f"tunefetch_{timestamp}.jsonl"
            self._json_file = open(self.path, "a", encoding="utf-8")  # noqa: SIM115

        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all records."""
        self._session_context.update(kwargs)

    def _format_message(self, event: str, **context) -> str:
        parts = [f"[{event}]"]
        for key, value in context.items():
            parts.append(f"{key}={value}")
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        if not self._json_file or self._json_file.closed:
            return
        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }
        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except OSError as e:
            self._logger.warning(f"JSON logging failed: {e}")

    def _emit(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            self._logger.log(level, self._format_message(event, **context))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        self._emit(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self._emit(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._emit(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self._emit(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close the JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class JobEventLogger:
    """Records every job state transition; usable directly as a scheduler observer."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def __call__(self, event: ProgressEvent) -> None:
        context = {
            "job_id": event.job_id,
            "state": event.state.value,
            "previous": event.previous.value if event.previous else None,
            "label": event.label,
        }
        if event.reason:
            context["reason"] = event.reason
        if event.state.name == "FAILED":
            self.logger.error("job_state_changed", **context)
        else:
            self.logger.debug("job_state_changed", **context)


class SessionLogger:
    """Specialized logger for batch session events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def session_started(self, total_inputs: int, target: str, max_workers: int):
        self.logger.info(
            "session_started",
            total_inputs=total_inputs,
            target=target,
            max_workers=max_workers,
        )

    def session_completed(self, result: BatchResult):
        self.logger.info(
            "session_completed",
            duration_s=round(result.duration, 2),
            peak_active=result.peak_active,
            **result.summary(),
        )
        for outcome in result.failed:
            self.logger.error(
                "job_failed",
                job_id=outcome.job_id,
                source=outcome.request.source,
                reason=outcome.reason,
                retries=outcome.retries,
            )
        for failure in result.expansion_failures:
            self.logger.warning(
                "expansion_failed", origin=failure.origin, reason=failure.reason
            )


def create_structured_logger(
    log_dir: Optional[Path] = None,
) -> tuple[StructuredLogger, JobEventLogger, SessionLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, job_logger, session_logger)
    """
    base = StructuredLogger("tunefetch.events", log_dir=log_dir, enable_console=False)
    return base, JobEventLogger(base), SessionLogger(base)
