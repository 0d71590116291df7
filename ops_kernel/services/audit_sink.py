"""
Audit/security sink for operational events.

The kernel reports two kinds of events to whoever is watching for misuse
or data drift: ``validation_failed`` (a payload was rejected, or an
inventory pre-flight check failed) and ``repair_applied`` (the repair
engine changed the store).  The default sink writes them to the
``ops_kernel.security`` logger as structured JSON; applications can pass
any object with an ``emit`` method instead.
"""

from typing import Any, Protocol, runtime_checkable

from ops_kernel.logging_config import get_logger

VALIDATION_FAILED = "validation_failed"
REPAIR_APPLIED = "repair_applied"
PERMISSION_DENIED = "permission_denied"


@runtime_checkable
class AuditSink(Protocol):
    def emit(self, event_type: str, payload: dict[str, Any]) -> None: ...


class LoggingAuditSink:
    """Writes sink events to the structured log."""

    def __init__(self, logger_name: str = "security"):
        self._logger = get_logger(logger_name)

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        if event_type == REPAIR_APPLIED:
            self._logger.info(event_type, extra={"sink_payload": payload})
        else:
            self._logger.warning(event_type, extra={"sink_payload": payload})
