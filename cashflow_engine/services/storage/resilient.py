"""
Retrying Storage Wrapper

Every call into the external persistence layer goes through this wrapper.
Transient failures are retried with exponential backoff; anything else,
and the last transient failure once attempts run out, is raised to the
caller as a StorageError. Writes are therefore at-least-once, which is
safe because upsert_events is keyed on the event fingerprint.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cashflow_engine.config import StorageSettings, get_settings
from cashflow_engine.models.budget import MonthlyBudgetSnapshot
from cashflow_engine.models.recurrence import (
    DateWindow,
    FinancialEvent,
    RecurrenceRule,
)
from cashflow_engine.services.storage.interface import (
    FinanceStorageInterface,
    StorageError,
    TransientStorageError,
)


logger = structlog.get_logger(__name__)


class RetryingFinanceStorage(FinanceStorageInterface):
    """
    Decorates any FinanceStorageInterface with tenacity retries.

    Unexpected exceptions from the backend are wrapped in StorageError
    so callers only ever see the storage error taxonomy.
    """

    def __init__(
        self,
        inner: FinanceStorageInterface,
        settings: Optional[StorageSettings] = None,
    ):
        self._inner = inner
        self._settings = settings or get_settings().storage

    @property
    def inner(self) -> FinanceStorageInterface:
        return self._inner

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "storage_retry",
            attempt=retry_state.attempt_number,
            error=str(exc),
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_wait_seconds,
                min=self._settings.retry_min_wait_seconds,
                max=self._settings.retry_max_wait_seconds,
            ),
            retry=retry_if_exception_type(TransientStorageError),
            before_sleep=self._log_retry,
            reraise=True,
        )

    async def _call(
        self,
        operation: str,
        func: Callable[..., Awaitable[Any]],
        *args,
        **kwargs,
    ) -> Any:
        try:
            async for attempt in self._retrying():
                with attempt:
                    result = await func(*args, **kwargs)
            return result
        except StorageError:
            logger.error("storage_call_failed", operation=operation)
            raise
        except Exception as e:
            logger.error("storage_call_failed", operation=operation, error=str(e))
            raise StorageError(f"Storage operation '{operation}' failed: {e}") from e

    async def load_rules(self, owner_id: UUID) -> list[RecurrenceRule]:
        return await self._call("load_rules", self._inner.load_rules, owner_id)

    async def get_rule(self, rule_id: UUID) -> Optional[RecurrenceRule]:
        return await self._call("get_rule", self._inner.get_rule, rule_id)

    async def save_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        return await self._call("save_rule", self._inner.save_rule, rule)

    async def advance_cursor(self, rule_id: UUID, candidate: date) -> Optional[date]:
        return await self._call("advance_cursor", self._inner.advance_cursor, rule_id, candidate)

    async def delete_rule(self, rule_id: UUID) -> bool:
        return await self._call("delete_rule", self._inner.delete_rule, rule_id)

    async def load_events(
        self,
        owner_id: UUID,
        window: Optional[DateWindow] = None,
        rule_id: Optional[UUID] = None,
    ) -> list[FinancialEvent]:
        return await self._call(
            "load_events", self._inner.load_events, owner_id, window=window, rule_id=rule_id
        )

    async def upsert_events(
        self,
        events: list[FinancialEvent],
    ) -> list[FinancialEvent]:
        return await self._call("upsert_events", self._inner.upsert_events, events)

    async def delete_events(self, event_ids: list[UUID]) -> int:
        return await self._call("delete_events", self._inner.delete_events, event_ids)

    async def earliest_event_date(self, owner_id: UUID) -> Optional[date]:
        return await self._call(
            "earliest_event_date", self._inner.earliest_event_date, owner_id
        )

    async def load_snapshot(
        self,
        owner_id: UUID,
        month: date,
    ) -> Optional[MonthlyBudgetSnapshot]:
        return await self._call("load_snapshot", self._inner.load_snapshot, owner_id, month)

    async def list_snapshots(self, owner_id: UUID) -> list[MonthlyBudgetSnapshot]:
        return await self._call("list_snapshots", self._inner.list_snapshots, owner_id)

    async def upsert_snapshot(
        self,
        snapshot: MonthlyBudgetSnapshot,
        overwrite: bool = True,
    ) -> MonthlyBudgetSnapshot:
        return await self._call(
            "upsert_snapshot", self._inner.upsert_snapshot, snapshot, overwrite=overwrite
        )

    async def load_default_starting_balance(self, owner_id: UUID) -> Optional[Decimal]:
        return await self._call(
            "load_default_starting_balance",
            self._inner.load_default_starting_balance,
            owner_id,
        )
