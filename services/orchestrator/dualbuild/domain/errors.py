"""错误分类：每一类错误对其所在任务及所有依赖任务均为致命错误。"""

from __future__ import annotations

from pathlib import Path


class BuildError(RuntimeError):
    """所有构建/测试编排错误的基类。"""


class InvalidVersionError(BuildError):
    def __init__(self, version: object) -> None:
        super().__init__(f'Invalid version "{version}"')
        self.version = version


class ResolutionError(BuildError):
    """打包时无法解析模块引用。"""

    def __init__(self, reference: str, including_file: Path | str) -> None:
        super().__init__(f"cannot resolve '{reference}' from {including_file}")
        self.reference = reference
        self.including_file = Path(including_file)


class SourceSyntaxError(BuildError):
    """源文件无法被词法分析，无法识别其中的模块引用。"""


class ToolError(BuildError):
    """外部黑盒工具以非零状态退出。"""

    def __init__(self, command: list[str], returncode: int | None, stderr: str) -> None:
        detail = stderr.strip() or "<no output>"
        tool = command[0] if command else "<empty>"
        if returncode is None:
            super().__init__(f"{tool}: {detail}")
        else:
            super().__init__(f"{tool} exited with {returncode}: {detail}")
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr


class InstallError(BuildError):
    def __init__(self, directory: Path, detail: str) -> None:
        super().__init__(f"sandbox install failed in {directory}: {detail}")
        self.directory = directory
        self.detail = detail


class TestFailure(BuildError):
    """一个或多个环境中存在失败断言。"""

    __test__ = False

    def __init__(self, environments: list[str], detail: str = "", results: list[object] | None = None) -> None:
        message = f"tests failed in: {', '.join(environments)}"
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)
        self.environments = environments
        self.detail = detail
        self.results = list(results or [])


class EngineLaunchError(BuildError):
    def __init__(self, engine: str, detail: str, results: list[object] | None = None) -> None:
        super().__init__(f"browser engine '{engine}' failed to launch: {detail}")
        self.engine = engine
        self.detail = detail
        self.results = list(results or [])


class TypeCheckError(BuildError):
    def __init__(self, diagnostics: list[str]) -> None:
        joined = "\n".join(diagnostics)
        super().__init__(f"TypeScript declarations contain errors:\n{joined}")
        self.diagnostics = diagnostics


class TaskGraphError(BuildError):
    """任务图声明或调度错误。"""


class DuplicateTaskError(TaskGraphError):
    pass


class UnknownTaskError(TaskGraphError):
    pass


class CycleError(TaskGraphError):
    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"task graph contains a cycle: {' -> '.join(cycle)}")
        self.cycle = cycle


class TaskFailedError(BuildError):
    """运行中首个失败任务的包装错误，原始错误保存在 __cause__。"""

    def __init__(self, task: str, error: BaseException) -> None:
        super().__init__(f"task '{task}' failed: {error}")
        self.task = task
        self.error = error
