"""构建/测试任务声明：把各组件组合为命名任务图，对应命令行的 build/test/set-version 等命令。"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from dualbuild.application.container import Services
from dualbuild.application.graph import TaskGraph
from dualbuild.domain.models import BuildArtifact, TestRunResult
from dualbuild.infra.testing.discovery import discover

logger = logging.getLogger(__name__)

NODEJS = "nodejs"
BUILD_BROWSER = "build-browser"
BUILD_BROWSER_TEST = "build-browser-test"
BROWSER = "browser"
ALL = "all"
BUILD = "build"
INSTALL_SANDBOX = "install-driver-into-sandbox"
TEST_NODEJS = "test-nodejs"
RUN_BROWSER_TEST = "run-browser-test"
TEST_BROWSER = "test-browser"
DECLARATION_TESTS = "run-ts-declaration-tests"
TEST = "test"
DEFAULT = "default"
SET_VERSION = "set"
START_FIXTURE = "start-fixture"
STOP_FIXTURE = "stop-fixture"
STRESS_TESTS = "run-stress-tests"
CLEAN = "clean"

# test 命令的结果报告顺序：声明检查、服务端、浏览器。
TEST_REPORT_ORDER = (DECLARATION_TESTS, TEST_NODEJS, RUN_BROWSER_TEST)


def engine_task(engine: str) -> str:
    return f"{RUN_BROWSER_TEST}-{engine}"


@dataclass(slots=True)
class PipelineOptions:
    """单次命令调用的参数；version 仅在 set 任务执行期间使用。"""
    version: str | None = None
    engines: list[str] = field(default_factory=list)


def build_task_graph(services: Services, options: PipelineOptions | None = None) -> TaskGraph:
    """声明全部命名任务；返回的图由调用方交给 TaskExecutor 执行。"""
    options = options or PipelineOptions()
    settings = services.settings
    layout = services.layout
    graph = TaskGraph()

    async def build_node() -> BuildArtifact:
        return await services.node_builder.build()

    async def build_browser() -> list[BuildArtifact]:
        return await services.browser_builder.build_library(
            entry_point=settings.resolve(settings.entry_point),
            output_dir=layout.browser_lib_dir,
            bundle_name=settings.bundle_name,
            standalone=settings.standalone_name,
        )

    async def build_browser_test() -> BuildArtifact:
        specs = discover(layout.test_dir, settings.browser_test_patterns_list(), settings.browser_test_excludes_list())
        return await services.browser_builder.build_tests(
            test_files=specs,
            output_path=layout.browser_test_dir / f"{settings.bundle_name}.test.js",
        )

    async def install_sandbox() -> None:
        await services.sandbox.install()

    async def test_nodejs() -> TestRunResult:
        specs = discover(layout.test_dir, settings.server_test_patterns_list(), settings.server_test_excludes_list())
        return await services.server_tests.run(specs, suite="unit")

    def run_engines(engines: list[str]):
        async def action() -> list[TestRunResult]:
            bundle = layout.browser_test_dir / f"{settings.bundle_name}.test.js"
            return await services.matrix.run(engines, bundle)

        return action

    async def run_declaration_tests() -> list[str]:
        files = discover(layout.project_root, settings.declaration_patterns_list())
        return await services.checker.check(files)

    def set_version() -> str:
        return services.stamper.stamp(options.version).version

    async def start_fixture() -> None:
        await services.fixture.start()

    async def stop_fixture() -> None:
        await services.fixture.stop()

    async def stress_tests() -> TestRunResult:
        specs = discover(layout.test_dir, settings.stress_test_patterns_list())
        return await services.stress_tests.run(specs, suite="stress")

    graph.declare(NODEJS, action=build_node, description="compile the server module tree into lib/")
    graph.declare(BUILD_BROWSER, action=build_browser, description="bundle full and minified browser scripts")
    graph.declare(BUILD_BROWSER_TEST, action=build_browser_test, description="bundle browser test files")
    graph.declare(BROWSER, [BUILD_BROWSER_TEST, BUILD_BROWSER], description="all browser bundles")
    graph.declare(ALL, [NODEJS, BROWSER], description="server tree and browser bundles")
    graph.declare(BUILD, [ALL], description="alias of all")
    graph.declare(INSTALL_SANDBOX, [NODEJS], install_sandbox, description="install the server artifact into build/sandbox")
    graph.declare(TEST_NODEJS, [INSTALL_SANDBOX], test_nodejs, description="run server tests against the sandbox")

    for engine in services.matrix.available_engines:
        graph.declare(engine_task(engine), action=run_engines([engine]), description=f"run browser tests in {engine}")
    default_engines = options.engines or settings.browser_engines_list()
    graph.declare(RUN_BROWSER_TEST, action=run_engines(default_engines), description="run the configured engines")
    graph.series(TEST_BROWSER, [ALL, RUN_BROWSER_TEST], description="build, then run browser tests")

    graph.declare(DECLARATION_TESTS, action=run_declaration_tests, description="strict check of type declarations")
    graph.declare(TEST, [DECLARATION_TESTS, TEST_NODEJS, TEST_BROWSER], description="declarations, server and browser")
    graph.declare(DEFAULT, [TEST])

    graph.declare(SET_VERSION, action=set_version, description="stamp --version into the version file")
    graph.declare(START_FIXTURE, action=start_fixture, description="start the integration test fixture")
    graph.declare(STOP_FIXTURE, action=stop_fixture, description="stop the integration test fixture")
    graph.declare(STRESS_TESTS, action=stress_tests, description="run stress tests")
    graph.declare(CLEAN, action=layout.clean, description="delete lib/ and build/")

    graph.validate()
    return graph
