"""运行报告：将任务执行记录与测试结果汇总为可序列化的 pydantic 模型。"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from dualbuild.application.executor import RunOutcome, TaskRecord
from dualbuild.domain.enums import ResultStatus, TaskState
from dualbuild.domain.models import TestRunResult


class TaskRecordModel(BaseModel):
    """单个任务执行记录。"""
    name: str
    state: TaskState
    duration_ms: float | None = None
    error_type: str | None = None
    error: str | None = None


class TestResultModel(BaseModel):
    """单条 (环境, 套件) 测试结果。"""
    environment: str
    suite: str
    status: ResultStatus
    diagnostics: str | None = None


class RunReport(BaseModel):
    """一次命令执行的完整报告。"""
    run_id: str
    target: str
    succeeded: bool
    failed_task: str | None = None
    error: str | None = None
    tasks: list[TaskRecordModel]
    results: list[TestResultModel]

    @property
    def exit_code(self) -> int:
        if not self.succeeded:
            return 1
        if any(item.status is not ResultStatus.passed for item in self.results):
            return 1
        return 0


def _results_of(value: Any) -> list[TestRunResult]:
    if isinstance(value, TestRunResult):
        return [value]
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, TestRunResult)]
    return []


def collect_results(records: Iterable[TaskRecord], order: Sequence[str] = ()) -> list[TestRunResult]:
    """按给定任务顺序（其余按启动时间）收集成功输出或失败错误中携带的测试结果。"""
    ranked = sorted(
        records,
        key=lambda item: (
            order.index(item.name) if item.name in order else len(order),
            item.started_at if item.started_at is not None else float("inf"),
        ),
    )
    results: list[TestRunResult] = []
    for record in ranked:
        results.extend(_results_of(record.outcome))
        results.extend(_results_of(getattr(record.error, "results", None)))
    return results


def build_report(outcome: RunOutcome, *, report_order: Sequence[str] = ()) -> RunReport:
    executed = outcome.executed()
    skipped = [item for item in outcome.records.values() if item.started_at is None]
    return RunReport(
        run_id=outcome.run_id,
        target=outcome.target,
        succeeded=outcome.succeeded,
        failed_task=outcome.failed_task,
        error=str(outcome.error) if outcome.error is not None else None,
        tasks=[
            TaskRecordModel(
                name=item.name,
                state=item.state,
                duration_ms=item.duration_ms,
                error_type=type(item.error).__name__ if item.error is not None else None,
                error=str(item.error) if item.error is not None else None,
            )
            for item in [*executed, *skipped]
        ],
        results=[
            TestResultModel(
                environment=item.environment,
                suite=item.suite,
                status=item.status,
                diagnostics=item.diagnostics,
            )
            for item in collect_results(outcome.records.values(), report_order)
        ],
    )


def write_report(report: RunReport, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2) + "\n", encoding="utf-8")
    return path
