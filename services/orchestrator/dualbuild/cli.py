"""命令行入口：build / test / test-browser / set-version / watch 及夹具生命周期命令。"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from dualbuild.application import pipeline
from dualbuild.application.container import Services, get_executor, get_services, shutdown_container_resources
from dualbuild.application.executor import RunOutcome
from dualbuild.application.pipeline import PipelineOptions, build_task_graph
from dualbuild.application.report import RunReport, build_report, write_report
from dualbuild.config import get_settings
from dualbuild.domain.errors import BuildError, TaskFailedError
from dualbuild.infra.logging.setup import configure_logging, shutdown_logging
from dualbuild.infra.watch import BatchWatcher

logger = logging.getLogger(__name__)

# 命令到任务名的映射；其余命令在 main 中单独处理。
COMMAND_TASKS = {
    "build": pipeline.BUILD,
    "test": pipeline.TEST,
    "test-node": pipeline.TEST_NODEJS,
    "typecheck": pipeline.DECLARATION_TESTS,
    "set-version": pipeline.SET_VERSION,
    "start-fixture": pipeline.START_FIXTURE,
    "stop-fixture": pipeline.STOP_FIXTURE,
    "stress-test": pipeline.STRESS_TESTS,
    "clean": pipeline.CLEAN,
}


def build_parser(available_engines: Sequence[str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dualbuild", description="Build and test a dual-target client library")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("build", help="build the server module tree and the browser bundles")
    sub.add_parser("test", help="declaration check, server tests and browser tests")
    sub.add_parser("test-node", help="server tests against the sandbox-installed artifact")
    sub.add_parser("typecheck", help="strict check of the public type declarations")

    browser = sub.add_parser("test-browser", help="build, then run browser tests")
    browser.add_argument(
        "--engine",
        action="append",
        choices=list(available_engines),
        help="engine to run (repeatable); defaults to the configured engines",
    )
    browser.add_argument("--skip-build", action="store_true", help="run against the existing test bundle")

    set_version = sub.add_parser("set-version", help="stamp the version into the version file")
    set_version.add_argument("--version", required=True, dest="version_value")

    sub.add_parser("watch", help="rebuild whenever a source file changes")
    sub.add_parser("watch-test", help="run server tests, then re-run them on source or test changes")
    sub.add_parser("start-fixture", help="start the integration test fixture")
    sub.add_parser("stop-fixture", help="stop the integration test fixture")
    sub.add_parser("stress-test", help="run the stress test suite")
    sub.add_parser("clean", help="delete lib/ and build/")
    sub.add_parser("tasks", help="list declared tasks")

    run = sub.add_parser("run", help="run any declared task by name")
    run.add_argument("task")
    return parser


def run_task(services: Services, task: str, options: PipelineOptions) -> RunReport:
    """以全新任务图执行一个任务，写出运行报告并返回。"""
    graph = build_task_graph(services, options)
    outcome: RunOutcome = get_executor().run_sync(graph, task, raise_on_failure=False)
    order = pipeline.TEST_REPORT_ORDER if task in {pipeline.TEST, pipeline.DEFAULT} else ()
    report = build_report(outcome, report_order=order)
    write_report(report, services.layout.reports_dir / "run-report.json")
    return report


def print_report(report: RunReport) -> None:
    for item in report.results:
        print(f"{item.environment:<10} {item.suite:<10} {item.status.value}")
    if report.failed_task:
        print(f"[ERROR] task={report.failed_task}: {report.error}", file=sys.stderr)


def _watch(services: Services, task: str, roots: list[tuple[Path, list[str]]]) -> int:
    def rebuild(_changed: list[Path]) -> None:
        report = run_task(services, task, PipelineOptions())
        print_report(report)
        if report.exit_code:
            raise TaskFailedError(report.failed_task or task, BuildError(report.error or "failed"))

    watcher = BatchWatcher(roots, rebuild, debounce_seconds=services.settings.watch_debounce_seconds)
    try:
        watcher.run_forever()
    except KeyboardInterrupt:
        watcher.stop()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    settings = get_settings()
    parser = build_parser(settings.available_engines_list())
    args = parser.parse_args(argv)
    configure_logging(settings, process_role="cli")
    try:
        services = get_services()
        if args.command == "tasks":
            for task in build_task_graph(services).all():
                prerequisites = ", ".join(task.prerequisites) or "-"
                print(f"{task.name:<32} {prerequisites:<60} {task.description}")
            return 0

        source_patterns = ["**/*.js"]
        if args.command == "watch":
            return _watch(services, pipeline.ALL, [(services.layout.source_dir, source_patterns)])
        if args.command == "watch-test":
            initial = run_task(services, pipeline.TEST_NODEJS, PipelineOptions())
            print_report(initial)
            roots = [(services.layout.source_dir, source_patterns), (services.layout.test_dir, source_patterns)]
            return _watch(services, pipeline.TEST_NODEJS, roots)

        options = PipelineOptions()
        if args.command == "test-browser":
            options.engines = list(args.engine or [])
            task = pipeline.RUN_BROWSER_TEST if args.skip_build else pipeline.TEST_BROWSER
        elif args.command == "run":
            task = args.task
        else:
            task = COMMAND_TASKS[args.command]
            if args.command == "set-version":
                options.version = args.version_value

        report = run_task(services, task, options)
        print_report(report)
        return report.exit_code
    except BuildError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    finally:
        shutdown_container_resources()
        shutdown_logging()


if __name__ == "__main__":
    raise SystemExit(main())
