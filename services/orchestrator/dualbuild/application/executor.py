"""任务执行器：为每个任务维护一个完成句柄，按前置关系调度并在首个失败时整体中止。"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from dualbuild.application.graph import Task, TaskGraph
from dualbuild.domain.enums import TaskState
from dualbuild.domain.errors import TaskFailedError
from dualbuild.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskRecord:
    """单次运行中一个任务的执行记录，时间戳取自 time.monotonic()。"""
    name: str
    state: TaskState = TaskState.pending
    started_at: float | None = None
    finished_at: float | None = None
    outcome: Any = None
    error: BaseException | None = None

    @property
    def duration_ms(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return round((self.finished_at - self.started_at) * 1000, 2)


@dataclass(slots=True)
class RunOutcome:
    """一次 run 的结果：目标任务、执行顺序记录与首个失败。"""
    run_id: str
    target: str
    records: dict[str, TaskRecord] = field(default_factory=dict)
    failed_task: str | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.failed_task is None

    def executed(self) -> list[TaskRecord]:
        """按启动时间返回实际启动过动作的任务记录。"""
        started = [item for item in self.records.values() if item.started_at is not None]
        return sorted(started, key=lambda item: item.started_at or 0.0)


class _Run:
    """单次运行的调度状态；每次 run 都从全新状态开始。"""

    def __init__(self, graph: TaskGraph, outcome: RunOutcome) -> None:
        self._graph = graph
        self._outcome = outcome
        self._handles: dict[str, asyncio.Task[Any]] = {}

    def handle(self, name: str) -> asyncio.Task[Any]:
        """返回任务的完成句柄；首次请求时才启动，保证每个任务至多执行一次。"""
        existing = self._handles.get(name)
        if existing is not None:
            return existing
        task = self._graph.get(name)
        self._outcome.records[name] = TaskRecord(name=name)
        handle = asyncio.create_task(self._execute(task), name=f"dualbuild:{name}")
        self._handles[name] = handle
        return handle

    async def _execute(self, task: Task) -> Any:
        record = self._outcome.records[task.name]
        try:
            if task.ordered:
                for prerequisite in task.prerequisites:
                    await self.handle(prerequisite)
            elif task.prerequisites:
                await asyncio.gather(*(self.handle(item) for item in task.prerequisites))
        except BaseException:
            # 前置任务失败或被取消：本任务的动作从未开始。
            record.state = TaskState.cancelled
            raise

        if self._outcome.failed_task is not None:
            record.state = TaskState.cancelled
            raise asyncio.CancelledError()

        record.state = TaskState.running
        record.started_at = time.monotonic()
        with bind_log_context(task_name=task.name):
            logger.info("starting '%s'", task.name, extra={"event": "task.started"})
            try:
                record.outcome = await _invoke(task)
            except asyncio.CancelledError:
                record.finished_at = time.monotonic()
                record.state = TaskState.cancelled
                raise
            except Exception as exc:
                record.finished_at = time.monotonic()
                record.state = TaskState.failed
                record.error = exc
                self._fail(task.name, exc)
                logger.error(
                    "'%s' errored after %sms",
                    task.name,
                    record.duration_ms,
                    extra={
                        "event": "task.failed",
                        "duration_ms": record.duration_ms,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                raise
            record.finished_at = time.monotonic()
            record.state = TaskState.succeeded
            logger.info(
                "finished '%s' after %sms",
                task.name,
                record.duration_ms,
                extra={"event": "task.succeeded", "duration_ms": record.duration_ms},
            )
        return record.outcome

    def _fail(self, name: str, error: BaseException) -> None:
        if self._outcome.failed_task is not None:
            return
        self._outcome.failed_task = name
        self._outcome.error = error
        current = asyncio.current_task()
        for handle in self._handles.values():
            if handle is not current and not handle.done():
                handle.cancel()

    async def cancel_all(self) -> None:
        for handle in self._handles.values():
            if not handle.done():
                handle.cancel()
        await self.drain()

    async def drain(self) -> None:
        """等待所有已启动句柄结束（含被取消的），不遗留未取回的异常。"""
        while True:
            pending = [item for item in self._handles.values() if not item.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        for handle in self._handles.values():
            if not handle.cancelled():
                handle.exception()


async def _invoke(task: Task) -> Any:
    """执行任务动作：协程函数直接等待，同步函数放入线程避免阻塞并发任务。"""
    if task.action is None:
        return None
    if inspect.iscoroutinefunction(task.action):
        return await task.action()
    result = await asyncio.to_thread(task.action)
    if inspect.isawaitable(result):
        return await result
    return result


class TaskExecutor:
    """按需执行任务图中的命名任务及其全部传递前置任务。"""

    async def run(self, graph: TaskGraph, name: str, *, raise_on_failure: bool = True) -> RunOutcome:
        """执行目标任务；任一动作失败则取消其余任务并抛出 TaskFailedError。"""
        graph.closure(name)
        outcome = RunOutcome(run_id=uuid4().hex[:12], target=name)
        run = _Run(graph, outcome)
        with bind_log_context(run_id=outcome.run_id):
            logger.info("run started: %s", name, extra={"event": "run.started", "op": name})
            started = time.monotonic()
            try:
                await run.handle(name)
            except (Exception, asyncio.CancelledError):
                if outcome.failed_task is None:
                    # 非动作失败（如外部取消）：取消全部任务后原样抛出。
                    await run.cancel_all()
                    raise
            await run.drain()
            duration_ms = round((time.monotonic() - started) * 1000, 2)
            if outcome.failed_task is None:
                logger.info(
                    "run finished: %s",
                    name,
                    extra={"event": "run.succeeded", "op": name, "duration_ms": duration_ms},
                )
            else:
                logger.error(
                    "run aborted by failing task '%s'",
                    outcome.failed_task,
                    extra={"event": "run.failed", "op": name, "duration_ms": duration_ms},
                )
        if outcome.error is not None and raise_on_failure:
            raise TaskFailedError(outcome.failed_task or name, outcome.error) from outcome.error
        return outcome

    def run_sync(self, graph: TaskGraph, name: str, *, raise_on_failure: bool = True) -> RunOutcome:
        """在新的事件循环中执行 run，供命令行等同步入口调用。"""
        return asyncio.run(self.run(graph, name, raise_on_failure=raise_on_failure))
