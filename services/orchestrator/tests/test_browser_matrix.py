"""浏览器测试矩阵测试：逐引擎独立结果、启动失败与命令行退出码。"""

from __future__ import annotations

import asyncio
import json
import shlex
import sys
from pathlib import Path

import pytest
from conftest import install_launcher, write

from dualbuild.application.container import shutdown_container_resources
from dualbuild.cli import main
from dualbuild.domain.enums import ResultStatus
from dualbuild.domain.errors import BuildError, EngineLaunchError, TestFailure, ToolError
from dualbuild.infra.testing.matrix import TestMatrixRunner
from dualbuild.infra.tools.runner import ToolRunner


def _matrix(project: Path, launcher: str) -> TestMatrixRunner:
    return TestMatrixRunner(
        project_root=project,
        runner=ToolRunner(),
        launcher_command=shlex.split(launcher),
        config_template="test/browser/karma-{engine}.conf.js",
        available_engines=["chrome", "firefox", "edge", "ie"],
    )


def _bundle(project: Path, *, failing: bool) -> Path:
    body = "throw new Error('FAILING_ASSERTION');\n" if failing else "/* ok */\n"
    return write(project, "build/browser/neo4j-web.test.js", body)


def test_every_engine_gets_its_own_result(project: Path) -> None:
    """验证每个引擎各自产生一条通过记录。"""
    launcher = install_launcher(project, ("chrome", "firefox"))
    results = asyncio.run(_matrix(project, launcher).run(["chrome", "firefox"], _bundle(project, failing=False)))

    assert [(item.environment, item.status) for item in results] == [
        ("chrome", ResultStatus.passed),
        ("firefox", ResultStatus.passed),
    ]
    assert "firefox: 3 specs, 0 failures" in (results[1].diagnostics or "")


def test_failing_assertion_fails_the_run(project: Path) -> None:
    """验证失败断言使整次运行失败，失败记录携带启动器原始输出。"""
    launcher = install_launcher(project)
    with pytest.raises(TestFailure) as exc_info:
        asyncio.run(_matrix(project, launcher).run(["firefox"], _bundle(project, failing=True)))

    assert exc_info.value.environments == ["firefox"]
    [record] = exc_info.value.results
    assert record.status is ResultStatus.failed
    assert "1 failures" in (record.diagnostics or "")


def test_missing_engine_config_is_launch_error(project: Path) -> None:
    """验证引擎无法启动时记为 error，并与其他引擎结果相互独立。"""
    launcher = install_launcher(project, ("firefox",))
    with pytest.raises(EngineLaunchError) as exc_info:
        asyncio.run(_matrix(project, launcher).run(["chrome", "firefox"], _bundle(project, failing=False)))

    assert exc_info.value.engine == "chrome"
    statuses = {item.environment: item.status for item in exc_info.value.results}
    assert statuses == {"chrome": ResultStatus.error, "firefox": ResultStatus.passed}


def test_signal_termination_is_launch_error(project: Path) -> None:
    """验证启动器被信号终止视为引擎崩溃而非断言失败。"""
    install_launcher(project)
    crash = shlex.join([sys.executable, "-c", "import os, signal; os.kill(os.getpid(), signal.SIGKILL)"])
    with pytest.raises(EngineLaunchError):
        asyncio.run(_matrix(project, crash).run(["firefox"], _bundle(project, failing=False)))


def test_unknown_engine_is_rejected(project: Path) -> None:
    """验证引擎名称必须属于可用集合，空集合同样被拒绝。"""
    matrix = _matrix(project, install_launcher(project))
    with pytest.raises(BuildError, match="unknown browser engine"):
        matrix.validate(["safari"])
    with pytest.raises(BuildError):
        matrix.validate([])


def test_hung_engine_is_recorded_and_others_still_run(project: Path) -> None:
    """验证单个引擎超时被记为 error（诊断含引擎名与超时信息），其余引擎照常运行。"""
    install_launcher(project, ("chrome", "firefox"))
    launcher = [
        sys.executable,
        "-c",
        "import os, sys, time\nif os.environ['DUALBUILD_ENGINE'] == 'chrome':\n    time.sleep(5)\nsys.exit(0)",
    ]
    matrix = TestMatrixRunner(
        project_root=project,
        runner=ToolRunner(timeout_seconds=0.5),
        launcher_command=launcher,
        config_template="test/browser/karma-{engine}.conf.js",
        available_engines=["chrome", "firefox"],
    )

    with pytest.raises(EngineLaunchError) as exc_info:
        asyncio.run(matrix.run(["chrome", "firefox"], _bundle(project, failing=False)))

    assert exc_info.value.engine == "chrome"
    assert "timed out after 0.5s" in str(exc_info.value)
    statuses = {item.environment: item.status for item in exc_info.value.results}
    assert statuses == {"chrome": ResultStatus.error, "firefox": ResultStatus.passed}


def test_runner_timeout_raises_tool_error() -> None:
    """验证外部工具超时转为 ToolError（returncode 为 None），不再抛出空消息的 TimeoutError。"""
    runner = ToolRunner(timeout_seconds=0.3)
    with pytest.raises(ToolError) as exc_info:
        asyncio.run(runner.run([sys.executable, "-c", "import time; time.sleep(5)"], op="hang"))
    assert exc_info.value.returncode is None
    assert "timed out after 0.3s" in str(exc_info.value)


@pytest.fixture
def cli_env(project: Path, monkeypatch: pytest.MonkeyPatch):
    """通过 DUALBUILD_ 环境变量把命令行指向临时项目。"""
    monkeypatch.setenv("DUALBUILD_PROJECT_ROOT", str(project))
    monkeypatch.setenv("DUALBUILD_TRANSPILE_COMMAND", "")
    monkeypatch.setenv("DUALBUILD_MINIFY_COMMAND", "")
    monkeypatch.setenv("DUALBUILD_BROWSER_LAUNCHER_COMMAND", install_launcher(project))
    monkeypatch.setenv("DUALBUILD_LOG_CONSOLE_LEVEL", "ERROR")
    shutdown_container_resources()
    yield project
    shutdown_container_resources()


def test_cli_test_browser_exit_code_reflects_failures(cli_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """验证 test-browser --engine firefox：存在失败断言时退出码非零，报告记录 firefox 失败。
    参数:
    - cli_env: 指向临时项目的命令行环境。
    - capsys: 捕获标准输出。
    """
    write(cli_env, "test/failing.test.js", "throw new Error('FAILING_ASSERTION');\n")

    exit_code = main(["test-browser", "--engine", "firefox"])

    assert exit_code != 0
    report = json.loads((cli_env / "build" / "reports" / "run-report.json").read_text(encoding="utf-8"))
    assert report["failed_task"] == "run-browser-test"
    assert [(item["environment"], item["status"]) for item in report["results"]] == [("firefox", "failed")]
    assert "firefox" in capsys.readouterr().out


def test_cli_test_browser_passes_with_clean_bundle(cli_env: Path) -> None:
    """验证全部断言通过时退出码为 0。"""
    assert main(["test-browser", "--engine", "firefox"]) == 0
    assert (cli_env / "build" / "logs" / "cli" / "dualbuild.jsonl").is_file()


def test_cli_skip_build_uses_existing_bundle(cli_env: Path) -> None:
    """验证 --skip-build 直接使用已存在的测试包，不重新构建。"""
    _bundle(cli_env, failing=True)
    assert main(["test-browser", "--engine", "firefox", "--skip-build"]) == 1
    assert not (cli_env / "lib").exists()


def test_cli_invalid_version_exits_non_zero(cli_env: Path) -> None:
    """验证 set-version 传入非法版本时退出码非零且版本文件不变。"""
    version_file = cli_env / "src" / "version.js"
    original = version_file.read_bytes()
    assert main(["set-version", "--version", "banana"]) == 1
    assert version_file.read_bytes() == original
