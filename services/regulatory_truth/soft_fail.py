"""
Soft-Fail Batch Runner
======================

Failure isolation for pipeline stages. Every wrapped operation returns a
``SoftFailResult`` instead of raising; failures are logged with their
operation/entity context and persisted through an injected recorder so
one bad item never halts a batch.

Cancellation is cooperative and checked between items, never mid-item.
``asyncio.CancelledError`` is not a failure and always propagates.

Version: 0.1.0
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Generic, TypeVar

from shared.logging import get_logger
from shared.models import SoftFailRecord

logger = get_logger(__name__)

T = TypeVar("T")
ItemT = TypeVar("ItemT")

FailureRecorder = Callable[[SoftFailRecord], Awaitable[None]]


@dataclass(frozen=True)
class SoftFailContext:
    """Describes what a wrapped operation is working on."""

    operation: str
    entity_type: str | None = None
    entity_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def for_item(self, entity_id: str | None, index: int, total: int) -> "SoftFailContext":
        """Derive the context of one batch item."""
        return replace(
            self,
            entity_id=entity_id,
            metadata={**self.metadata, "index": index, "total": total},
        )


@dataclass
class SoftFailResult(Generic[T]):
    """Outcome of one wrapped operation."""

    ok: bool
    value: T | None
    error: str | None = None
    error_type: str | None = None
    used_fallback: bool = False
    entity_id: str | None = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.ok

    @property
    def data(self) -> T | None:
        return self.value


@dataclass
class BatchResult(Generic[T]):
    """Aggregate outcome of a soft-fail batch."""

    results: list[SoftFailResult[T]] = field(default_factory=list)
    skipped: int = 0
    cancelled: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    @property
    def failure_ratio(self) -> float:
        return self.failed / self.total if self.total else 0.0

    @property
    def errors(self) -> list[tuple[str | None, str]]:
        """(entity id, error message) for every failed item."""
        return [(r.entity_id, r.error or "") for r in self.results if not r.ok]

    def extend(self, other: "BatchResult[T]") -> None:
        self.results.extend(other.results)
        self.skipped += other.skipped
        self.cancelled = self.cancelled or other.cancelled


class SoftFailRunner:
    """
    Runs operations with soft-fail semantics.

    Args:
        recorder: Persists failure records (e.g. ``RuleStore.record_soft_failure``)
        clock: Monotonic clock used for durations
    """

    def __init__(
        self,
        recorder: FailureRecorder | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._recorder = recorder
        self._clock = clock

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        fallback: T | None,
        context: SoftFailContext,
    ) -> SoftFailResult[T]:
        """
        Execute ``fn``; convert any exception into a failed result.

        Returns:
            SoftFailResult with the value on success, or the fallback
            and error message on failure
        """
        started = self._clock()
        try:
            value = await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            duration_ms = (self._clock() - started) * 1000
            await self._handle_failure(e, context, duration_ms)
            return SoftFailResult(
                ok=False,
                value=fallback,
                error=str(e) or type(e).__name__,
                error_type=type(e).__name__,
                used_fallback=True,
                entity_id=context.entity_id,
                duration_ms=duration_ms,
            )

        return SoftFailResult(
            ok=True,
            value=value,
            entity_id=context.entity_id,
            duration_ms=(self._clock() - started) * 1000,
        )

    async def _handle_failure(
        self,
        error: Exception,
        context: SoftFailContext,
        duration_ms: float,
    ) -> None:
        logger.warning(
            "soft_fail",
            operation=context.operation,
            entity_type=context.entity_type,
            entity_id=context.entity_id,
            duration_ms=round(duration_ms, 2),
            error=str(error),
            error_type=type(error).__name__,
        )

        if self._recorder is None:
            return

        record = SoftFailRecord(
            operation=context.operation,
            entity_type=context.entity_type,
            entity_id=context.entity_id,
            error_message=str(error) or type(error).__name__,
            error_type=type(error).__name__,
            duration_ms=round(duration_ms, 2),
            metadata=dict(context.metadata),
        )
        try:
            await self._recorder(record)
        except Exception as e:
            # Recording is best-effort; the batch must keep going
            logger.error(
                "soft_fail_record_failed",
                operation=context.operation,
                entity_id=context.entity_id,
                error=str(e),
            )

    async def run_batch(
        self,
        items: Sequence[ItemT],
        fn: Callable[[ItemT, int], Awaitable[T]],
        context: SoftFailContext,
        key: Callable[[ItemT], str | None] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchResult[T]:
        """
        Apply ``fn`` to every item sequentially with per-item isolation.

        Args:
            items: Items to process
            fn: Coroutine function taking (item, index)
            context: Base context, extended per item
            key: Extracts the entity id of an item for logs and records
            cancel_event: When set, remaining items are skipped

        Returns:
            BatchResult with per-item results and counts
        """
        batch: BatchResult[T] = BatchResult()
        total = len(items)

        for index, item in enumerate(items):
            if cancel_event is not None and cancel_event.is_set():
                batch.cancelled = True
                batch.skipped = total - index
                logger.info(
                    "soft_fail_batch_cancelled",
                    operation=context.operation,
                    processed=index,
                    skipped=batch.skipped,
                )
                break

            item_context = context.for_item(key(item) if key else None, index, total)
            result = await self.run(
                lambda item=item, index=index: fn(item, index),
                None,
                item_context,
            )
            batch.results.append(result)

        logger.info(
            "soft_fail_batch_completed",
            operation=context.operation,
            succeeded=batch.succeeded,
            failed=batch.failed,
            total=batch.total,
        )
        return batch

    async def run_grouped(
        self,
        groups: Mapping[str, Sequence[ItemT]],
        fn: Callable[[ItemT, int], Awaitable[T]],
        context: SoftFailContext,
        key: Callable[[ItemT], str | None] | None = None,
        max_concurrency: int = 4,
        cancel_event: asyncio.Event | None = None,
    ) -> BatchResult[T]:
        """
        Process groups concurrently, items within a group sequentially.

        Groups are typically network domains, so per-domain ordering and
        rate limiting hold while different domains overlap.
        """
        semaphore = asyncio.Semaphore(max(1, max_concurrency))

        async def _run_group(name: str, group_items: Sequence[ItemT]) -> BatchResult[T]:
            async with semaphore:
                group_context = replace(context, metadata={**context.metadata, "group": name})
                return await self.run_batch(group_items, fn, group_context, key, cancel_event)

        group_results = await asyncio.gather(
            *(_run_group(name, group_items) for name, group_items in groups.items())
        )

        combined: BatchResult[T] = BatchResult()
        for group_result in group_results:
            combined.extend(group_result)
        return combined
