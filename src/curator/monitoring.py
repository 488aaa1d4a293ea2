import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class MonitoringEmitter(ABC):
    """Structured job events, fire-and-forget."""

    @abstractmethod
    def emit(self, job: str, status: str, context: Optional[Dict[str, Any]] = None) -> None:
        raise NotImplementedError()


class LoggingMonitoringEmitter(MonitoringEmitter):
    def __init__(self, logger_name: str = "curator.monitoring"):
        self.logger = logging.getLogger(logger_name)

    def emit(self, job: str, status: str, context: Optional[Dict[str, Any]] = None) -> None:
        payload = {"job": job, "status": status, **(context or {})}
        self.logger.info(f"{job}.{status}", extra={"context": payload})


class NullMonitoringEmitter(MonitoringEmitter):
    def emit(self, job: str, status: str, context: Optional[Dict[str, Any]] = None) -> None:
        return None


def emit_safely(
    emitter: Optional[MonitoringEmitter],
    job: str,
    status: str,
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """Monitoring must never break curation, failures are logged and dropped."""
    if emitter is None:
        return
    try:
        emitter.emit(job, status, context or {})
    except Exception as e:
        logger.warning(f"Monitoring emit failed for {job}.{status}: {e}")
