"""全局配置加载模块：从环境变量构建构建/测试编排参数并提供缓存访问。"""

from __future__ import annotations

import shlex
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv_to_list(value: str) -> list[str]:
    """将逗号分隔字符串转换为去空白列表。"""
    return [item.strip() for item in value.split(",") if item.strip()]


def _command(value: str) -> list[str]:
    """将命令行字符串按 shell 规则拆分为参数列表。"""
    return shlex.split(value)


class Settings(BaseSettings):
    """构建编排配置对象，从 DUALBUILD_ 前缀环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(
        env_prefix="DUALBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    project_root: Path = Field(default=Path("."))
    source_dir: Path = Path("src")
    test_dir: Path = Path("test")
    lib_dir: Path = Path("lib")
    build_dir: Path = Path("build")
    entry_point: Path = Path("src/index.js")
    version_file: Path = Path("src/version.js")
    version_placeholder: str = "0.0.0-dev"

    package_name: str = "neo4j-driver"
    bundle_name: str = "neo4j-web"
    standalone_name: str = "neo4j"

    server_test_patterns: str = "**/*.test.js"
    server_test_excludes: str = "**/browser/*.js"
    browser_test_patterns: str = "**/*.test.js"
    browser_test_excludes: str = "**/node/*.js,**/examples.test.js"
    stress_test_patterns: str = "**/stress.test.js"
    declaration_patterns: str = "test/types/**/*.ts,types/**/*.ts"

    # 外部工具均以黑盒命令调用；空字符串表示跳过该步骤（原样透传）。
    transpile_command: str = "npx babel --presets @babel/preset-env --plugins @babel/plugin-transform-runtime"
    minify_command: str = "npx terser --compress --mangle"
    install_command: str = "npm install"
    server_test_command: str = "npx jasmine"
    browser_launcher_command: str = "npx karma start --single-run"
    browser_config_template: str = "test/browser/karma-{engine}.conf.js"
    typecheck_command: str = (
        "npx tsc --noEmit --module es6 --target es6 --noImplicitAny --noImplicitReturns --strictNullChecks"
    )
    tool_timeout_seconds: int = 30 * 60
    # 服务端树与浏览器包各自同时运行的转译进程上限。
    transpile_concurrency: int = 8

    browser_engines: str = "firefox"
    available_engines: str = "chrome,firefox,edge,ie"

    fixture_command: str = "neoctrl"
    fixture_args: str = ""
    fixture_home: Path = Path("build/neo4j")
    fixture_health_url: str = "http://localhost:7474"
    fixture_start_timeout_seconds: int = 120

    watch_debounce_seconds: float = 0.5

    log_dir: Path = Path("build/logs")
    log_level: str = "INFO"
    log_console_level: str = "INFO"
    log_debug_modules: str = ""
    log_debug_tasks: str = ""
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 2000
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5

    def resolve(self, path: Path) -> Path:
        """相对路径统一锚定到 project_root。"""
        if path.is_absolute():
            return path
        root = self.project_root.resolve()
        if path == self.project_root:
            return root
        return (root / path).resolve()

    def browser_engines_list(self) -> list[str]:
        return _csv_to_list(self.browser_engines)

    def available_engines_list(self) -> list[str]:
        return _csv_to_list(self.available_engines)

    def server_test_patterns_list(self) -> list[str]:
        return _csv_to_list(self.server_test_patterns)

    def server_test_excludes_list(self) -> list[str]:
        return _csv_to_list(self.server_test_excludes)

    def browser_test_patterns_list(self) -> list[str]:
        return _csv_to_list(self.browser_test_patterns)

    def browser_test_excludes_list(self) -> list[str]:
        return _csv_to_list(self.browser_test_excludes)

    def stress_test_patterns_list(self) -> list[str]:
        return _csv_to_list(self.stress_test_patterns)

    def declaration_patterns_list(self) -> list[str]:
        return _csv_to_list(self.declaration_patterns)

    def log_debug_modules_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_modules)

    def log_debug_tasks_list(self) -> list[str]:
        return _csv_to_list(self.log_debug_tasks)

    def transpile_command_args(self) -> list[str]:
        return _command(self.transpile_command)

    def minify_command_args(self) -> list[str]:
        return _command(self.minify_command)

    def install_command_args(self) -> list[str]:
        return _command(self.install_command)

    def server_test_command_args(self) -> list[str]:
        return _command(self.server_test_command)

    def browser_launcher_command_args(self) -> list[str]:
        return _command(self.browser_launcher_command)

    def typecheck_command_args(self) -> list[str]:
        return _command(self.typecheck_command)

    def fixture_command_args(self) -> list[str]:
        return _command(self.fixture_command)

    def fixture_args_list(self) -> list[str]:
        return _command(self.fixture_args)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings，同时将项目根目录解析为绝对路径。"""
    settings = Settings()
    # 相对路径统一按当前工作目录解析，避免不同启动方式下语义漂移。
    if not settings.project_root.is_absolute():
        settings.project_root = (Path.cwd() / settings.project_root).resolve()
    return settings
