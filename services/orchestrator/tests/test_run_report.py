"""运行报告测试：结果收集顺序、失败错误中携带的结果与退出码。"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from dualbuild.application.executor import TaskExecutor
from dualbuild.application.graph import TaskGraph
from dualbuild.application.report import build_report, write_report
from dualbuild.domain.enums import ResultStatus
from dualbuild.domain.errors import TestFailure
from dualbuild.domain.models import TestRunResult


def test_report_orders_results_and_keeps_failures(tmp_path: Path) -> None:
    """验证结果按给定任务顺序汇总，失败任务错误中携带的结果同样进入报告。"""
    async def server() -> TestRunResult:
        await asyncio.sleep(0.02)
        return TestRunResult("server", "unit", ResultStatus.passed)

    async def browser() -> None:
        results = [TestRunResult("firefox", "browser", ResultStatus.failed, "1 failures")]
        raise TestFailure(["firefox"], "1 failures", results=results)

    graph = TaskGraph()
    graph.declare("test-nodejs", action=server)
    graph.declare("run-browser-test", action=browser)
    graph.declare("test", ["test-nodejs", "run-browser-test"])

    outcome = asyncio.run(TaskExecutor().run(graph, "test", raise_on_failure=False))
    report = build_report(outcome, report_order=("test-nodejs", "run-browser-test"))

    assert report.failed_task == "run-browser-test"
    assert [item.environment for item in report.results] == ["firefox"]
    assert report.exit_code == 1

    path = write_report(report, tmp_path / "reports" / "run-report.json")
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["results"][0]["status"] == "failed"
    assert {item["name"] for item in data["tasks"]} >= {"test-nodejs", "run-browser-test", "test"}


def test_successful_report_has_zero_exit_code() -> None:
    """验证全部通过时退出码为 0，顺序遵循 report_order。"""
    graph = TaskGraph()
    graph.declare("b", action=lambda: TestRunResult("firefox", "browser", ResultStatus.passed))
    graph.declare("a", action=lambda: TestRunResult("server", "unit", ResultStatus.passed))
    graph.declare("test", ["b", "a"])

    outcome = TaskExecutor().run_sync(graph, "test")
    report = build_report(outcome, report_order=("a", "b"))

    assert [item.environment for item in report.results] == ["server", "firefox"]
    assert report.exit_code == 0
