"""
Audit Logger

DESIGN DECISION: Every significant engine action is logged.
This provides:
1. Complete traceability of materialization and balance writes
2. Debugging capability
3. An explicit change channel for consumers (listeners)

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a broken audit store or listener never
  fails a reconcile)
- Supports correlation IDs to trace related events

Consumers that need to refresh after data changes subscribe a listener
instead of relying on any global event bus.
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union
from uuid import UUID, uuid4

import structlog

from cashflow_engine.config import LoggingSettings, get_settings
from cashflow_engine.models.audit import AuditEvent, AuditSeverity
from cashflow_engine.services.storage import AuditStorageInterface


AuditListener = Callable[[AuditEvent], Union[None, Awaitable[None]]]


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    """Configure structlog on top of the standard library logger."""
    settings = settings or get_settings().logging

    logging.basicConfig(format="%(message)s", level=settings.level)

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Each event goes to:
    1. Structured local log (for debugging)
    2. Audit storage, if configured
    3. Every subscribed listener
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
        listeners: Optional[list[AuditListener]] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            listeners: Callbacks notified of every event
        """
        self._storage = storage
        self._listeners: list[AuditListener] = list(listeners or [])
        self._logger = structlog.get_logger("cashflow_engine.audit")

    def subscribe(self, listener: AuditListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns a callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: AuditListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available, then
        notifies listeners.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        persisted = True
        if self._storage:
            try:
                persisted = await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                persisted = False

        await self._notify(event)
        return persisted

    async def _notify(self, event: AuditEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(
                    "audit_listener_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                    event_type=event.event_type.value,
                )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a trigger (e.g., a dashboard refresh).
    Pass it through all subsequent operations.
    """
    return uuid4()
