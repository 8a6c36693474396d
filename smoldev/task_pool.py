"""
Bounded async task pool

Runs at most ``limit`` coroutines at a time. ``submit`` blocks the caller
until a slot is free. After the first task failure no further task is
started; tasks already running are left to finish and every failure is
collected.

Usage:
    async with BoundedTaskPool(limit=5) as pool:
        for path in paths:
            await pool.submit(path, generate, path)
        result = await pool.join()

Leaving the ``async with`` block through an exception (including
cancellation) cancels every task still in flight.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from smoldev.exceptions import TaskNotStartedError
from smoldev.logging_config import logger


class TaskStatus(str, Enum):
    """Task execution status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    NOT_STARTED = "not_started"


@dataclass
class PoolTask:
    """A task submitted to the pool"""
    id: str
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: Optional[BaseException] = None
    start_time: float = 0
    end_time: float = 0


@dataclass
class PoolResult:
    """Result of joining the pool"""
    total_tasks: int
    completed: int
    failed: int
    not_started: int
    cancelled: int
    total_time: float
    results: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, BaseException] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def first_error(self) -> Optional[BaseException]:
        return next(iter(self.errors.values()), None)


class BoundedTaskPool:

    def __init__(self, limit: int, submit_delay: float = 0.0):
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        self.limit = limit
        self.submit_delay = submit_delay
        self._semaphore = asyncio.Semaphore(limit)
        self._records: List[PoolTask] = []
        self._running: List[asyncio.Task] = []
        self._failed = False
        self._in_flight = 0
        self.max_in_flight = 0
        self._start_time = time.time()

    @property
    def failed(self) -> bool:
        """True once any task has failed; no new task starts after that"""
        return self._failed

    async def __aenter__(self) -> "BoundedTaskPool":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.cancel()

    def _skip(self, record: PoolTask) -> PoolTask:
        record.status = TaskStatus.NOT_STARTED
        record.error = TaskNotStartedError(record.id)
        logger.debug(f"[TaskPool] not starting {record.id} after an earlier failure")
        return record

    async def submit(
        self,
        task_id: str,
        coro_func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> PoolTask:
        """Start coro_func(*args, **kwargs) once a slot is free"""
        record = PoolTask(id=task_id)
        self._records.append(record)

        if self._failed:
            return self._skip(record)

        await self._semaphore.acquire()
        if self._failed:
            self._semaphore.release()
            return self._skip(record)

        record.status = TaskStatus.RUNNING
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        self._running.append(asyncio.create_task(self._run(record, coro_func, args, kwargs)))

        if self.submit_delay > 0:
            await asyncio.sleep(self.submit_delay)
        return record

    async def _run(self, record: PoolTask, coro_func, args, kwargs) -> None:
        record.start_time = time.time()
        try:
            record.result = await coro_func(*args, **kwargs)
            record.status = TaskStatus.COMPLETED
        except asyncio.CancelledError:
            record.status = TaskStatus.CANCELLED
            raise
        except Exception as e:
            record.error = e
            record.status = TaskStatus.FAILED
            if not self._failed:
                logger.warning(f"[TaskPool] {record.id} failed, no new tasks will be started: {e}")
            self._failed = True
        finally:
            record.end_time = time.time()
            self._in_flight -= 1
            self._semaphore.release()

    async def join(self) -> PoolResult:
        """Wait for every started task and collect the outcome"""
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

        results: Dict[str, Any] = {}
        errors: Dict[str, BaseException] = {}
        counts = {status: 0 for status in TaskStatus}

        for record in self._records:
            counts[record.status] += 1
            if record.status == TaskStatus.COMPLETED:
                results[record.id] = record.result
            elif record.error is not None:
                errors[record.id] = record.error

        return PoolResult(
            total_tasks=len(self._records),
            completed=counts[TaskStatus.COMPLETED],
            failed=counts[TaskStatus.FAILED],
            not_started=counts[TaskStatus.NOT_STARTED],
            cancelled=counts[TaskStatus.CANCELLED],
            total_time=time.time() - self._start_time,
            results=results,
            errors=errors,
        )

    async def cancel(self) -> None:
        """Cancel every task still running and wait for them to unwind"""
        pending = [t for t in self._running if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.info(f"[TaskPool] cancelling {len(pending)} in-flight tasks")
            await asyncio.gather(*pending, return_exceptions=True)
