"""依赖容器模块，负责根据配置创建构建器、运行器与检查器等组件。"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from dualbuild.application.executor import TaskExecutor
from dualbuild.config import Settings, get_settings
from dualbuild.infra.builders.browser import BrowserArtifactBuilder
from dualbuild.infra.builders.node import NodeArtifactBuilder
from dualbuild.infra.fixture import FixtureController
from dualbuild.infra.sandbox import SandboxInstaller
from dualbuild.infra.storage.workspace import OutputLayout
from dualbuild.infra.testing.matrix import TestMatrixRunner
from dualbuild.infra.testing.server import ServerTestRunner
from dualbuild.infra.tools.runner import ToolRunner
from dualbuild.infra.typecheck import DeclarationChecker
from dualbuild.infra.versioning import VersionStamper


@dataclass(slots=True)
class Services:
    """一次进程内任务图所需的全部组件。"""
    settings: Settings
    layout: OutputLayout
    runner: ToolRunner
    node_builder: NodeArtifactBuilder
    browser_builder: BrowserArtifactBuilder
    sandbox: SandboxInstaller
    server_tests: ServerTestRunner
    stress_tests: ServerTestRunner
    matrix: TestMatrixRunner
    checker: DeclarationChecker
    stamper: VersionStamper
    fixture: FixtureController


def build_services(settings: Settings, *, runner: ToolRunner | None = None) -> Services:
    """按配置构建组件；测试可传入自定义 Settings 与 ToolRunner。"""
    layout = OutputLayout.from_settings(settings)
    runner = runner or ToolRunner(timeout_seconds=settings.tool_timeout_seconds)
    transpile = settings.transpile_command_args()
    return Services(
        settings=settings,
        layout=layout,
        runner=runner,
        node_builder=NodeArtifactBuilder(
            source_dir=layout.source_dir,
            output_dir=layout.lib_dir,
            runner=runner,
            transpile_command=transpile,
            concurrency=settings.transpile_concurrency,
        ),
        browser_builder=BrowserArtifactBuilder(
            project_root=layout.project_root,
            runner=runner,
            transpile_command=transpile,
            minify_command=settings.minify_command_args(),
            concurrency=settings.transpile_concurrency,
        ),
        sandbox=SandboxInstaller(
            sandbox_dir=layout.sandbox_dir,
            package_name=settings.package_name,
            package_path=layout.project_root,
            runner=runner,
            install_command=settings.install_command_args(),
        ),
        server_tests=ServerTestRunner(
            runner=runner,
            command=settings.server_test_command_args(),
            workdir=layout.sandbox_dir,
        ),
        stress_tests=ServerTestRunner(
            runner=runner,
            command=settings.server_test_command_args(),
            workdir=layout.project_root,
        ),
        matrix=TestMatrixRunner(
            project_root=layout.project_root,
            runner=runner,
            launcher_command=settings.browser_launcher_command_args(),
            config_template=settings.browser_config_template,
            available_engines=settings.available_engines_list(),
        ),
        checker=DeclarationChecker(
            runner=runner,
            command=settings.typecheck_command_args(),
            project_root=layout.project_root,
        ),
        stamper=VersionStamper(settings.resolve(settings.version_file), settings.version_placeholder),
        fixture=FixtureController(
            runner=runner,
            command=settings.fixture_command_args(),
            home=settings.resolve(settings.fixture_home),
            extra_args=settings.fixture_args_list(),
            health_url=settings.fixture_health_url or None,
            timeout_seconds=settings.fixture_start_timeout_seconds,
        ),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    """获取基于全局配置的组件集合单例。"""
    return build_services(get_settings())


@lru_cache(maxsize=1)
def get_executor() -> TaskExecutor:
    return TaskExecutor()


def shutdown_container_resources() -> None:
    """清理依赖容器缓存，确保后续调用可重新构建全新实例。"""
    for provider in (get_executor, get_services, get_settings):
        provider.cache_clear()
