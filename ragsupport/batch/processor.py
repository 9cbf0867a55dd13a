"""Bounded, resumable batch processing over many items."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable

from pydantic import Field

from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel


class BatchItemStatus(str, Enum):
    """Outcome of one batch item."""

    SUCCESS = "success"
    FAILED = "failed"


class BatchConfig(BaseModel):
    """Configuration for batch processing."""

    max_batch_size: int = Field(default=5, gt=0, description="Hard cap on items per invocation")
    time_budget_seconds: float = Field(
        default=25.0,
        gt=0,
        description="Wall-clock budget after which no new item starts",
    )
    item_delay_seconds: float = Field(
        default=0.35,
        ge=0,
        description="Pause between items to stay under upstream rate limits",
    )


class BatchRequest(BaseModel):
    """A batch invocation."""

    item_ids: list[str] = Field(default_factory=list, description="Candidate item IDs")
    batch_size: int = Field(default=5, description="Requested items per invocation (capped)")
    skip_existing: bool = Field(default=True, description="Skip items that are already done")


class BatchItemResult(BaseModel):
    """Result of one batch item."""

    item_id: str
    status: BatchItemStatus
    error: str | None = None
    duration_ms: int = 0


class BatchResult(BaseModel):
    """Result of a batch invocation."""

    processed: int = Field(default=0)
    success: int = Field(default=0)
    failed: int = Field(default=0)
    remaining: int = Field(default=0, description="Requested items still not done")
    time_budget_reached: bool = Field(default=False)
    effective_batch_size: int = Field(default=0)
    items: list[BatchItemResult] = Field(default_factory=list)


class BatchTask(ABC):
    """Work applied to each item of a batch.

    ``process`` must leave the item in a state where ``is_done`` returns
    True, so re-invoking with ``skip_existing`` makes monotonic progress.
    """

    name: str = "task"

    @abstractmethod
    async def is_done(self, item_id: str) -> bool:
        """Whether the item has already been processed."""

    @abstractmethod
    async def process(self, item_id: str) -> None:
        """Process one item, raising on failure."""


class BatchProcessor(LoggerMixin):
    """Runs a task over a bounded selection of items.

    Items run one at a time. Once the time budget is exhausted no further
    item is started and the result says so; a failing item is recorded and
    the batch moves on.
    """

    def __init__(
        self,
        config: BatchConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the processor.

        Args:
            config: Batch configuration
            clock: Monotonic clock in seconds
            sleep: Coroutine used for the pause between items
        """
        self.config = config or BatchConfig()
        self._clock = clock
        self._sleep = sleep

    def effective_batch_size(self, requested: int) -> int:
        """Clamp a requested batch size to ``[1, max_batch_size]``."""
        return max(1, min(requested, self.config.max_batch_size))

    async def run(self, request: BatchRequest, task: BatchTask) -> BatchResult:
        """Run one invocation.

        Args:
            request: Batch request
            task: Task to apply to each item

        Returns:
            Counts and per-item results
        """
        started_at = self._clock()
        batch_size = self.effective_batch_size(request.batch_size)
        item_ids = list(dict.fromkeys(request.item_ids))

        candidates = item_ids
        if request.skip_existing:
            candidates = [item_id for item_id in item_ids if not await self._is_done(task, item_id)]

        selected = candidates[:batch_size]
        result = BatchResult(effective_batch_size=batch_size)

        self.logger.info(
            "batch_started",
            task=task.name,
            requested=len(item_ids),
            selected=len(selected),
            batch_size=batch_size,
        )

        for position, item_id in enumerate(selected):
            if self._clock() - started_at > self.config.time_budget_seconds:
                result.time_budget_reached = True
                self.logger.warning(
                    "batch_time_budget_reached",
                    task=task.name,
                    processed=result.processed,
                )
                break

            result.items.append(await self._process_item(task, item_id))
            result.processed += 1
            if result.items[-1].status == BatchItemStatus.SUCCESS:
                result.success += 1
            else:
                result.failed += 1

            if position < len(selected) - 1 and self.config.item_delay_seconds > 0:
                await self._sleep(self.config.item_delay_seconds)

        result.remaining = sum(
            [not await self._is_done(task, item_id) for item_id in item_ids]
        )

        self.logger.info(
            "batch_completed",
            task=task.name,
            processed=result.processed,
            success=result.success,
            failed=result.failed,
            remaining=result.remaining,
            time_budget_reached=result.time_budget_reached,
        )

        return result

    async def _process_item(self, task: BatchTask, item_id: str) -> BatchItemResult:
        item_started = self._clock()
        try:
            await task.process(item_id)
        except Exception as e:
            self.logger.warning("batch_item_failed", task=task.name, item_id=item_id, error=str(e))
            return BatchItemResult(
                item_id=item_id,
                status=BatchItemStatus.FAILED,
                error=str(e) or type(e).__name__,
                duration_ms=int((self._clock() - item_started) * 1000),
            )

        return BatchItemResult(
            item_id=item_id,
            status=BatchItemStatus.SUCCESS,
            duration_ms=int((self._clock() - item_started) * 1000),
        )

    async def _is_done(self, task: BatchTask, item_id: str) -> bool:
        try:
            return await task.is_done(item_id)
        except Exception as e:
            self.logger.warning("batch_status_check_failed", task=task.name, item_id=item_id, error=str(e))
            return False
