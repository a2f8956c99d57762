"""声明文件检查：以严格规则类型检查公开 API 声明与用例文件，任何诊断均视为致命。"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from dualbuild.domain.errors import ToolError, TypeCheckError
from dualbuild.infra.tools.runner import ToolRunner

logger = logging.getLogger(__name__)


class DeclarationChecker:
    """调用类型检查器；非零退出或任意输出行都会产生 TypeCheckError。"""

    def __init__(self, *, runner: ToolRunner, command: Sequence[str], project_root: Path) -> None:
        self._runner = runner
        self._command = list(command)
        self._project_root = project_root

    async def check(self, files: Sequence[Path]) -> list[str]:
        """返回被检查的文件列表（相对项目根）。"""
        if not files:
            logger.warning("no declaration files to check", extra={"event": "typecheck.skipped"})
            return []
        relative = [self._relative(path) for path in files]
        command = [*self._command, *relative]
        try:
            result = await self._runner.run(command, cwd=self._project_root, op="typecheck")
        except FileNotFoundError as exc:
            raise TypeCheckError([f"type checker not found: {exc}"]) from exc
        except ToolError as exc:
            raise TypeCheckError([str(exc)]) from exc

        diagnostics = [line.rstrip() for line in result.output.splitlines() if line.strip()]
        if not result.ok and not diagnostics:
            diagnostics = [f"type checker exited with {result.returncode}"]
        if diagnostics:
            logger.error(
                "[ERROR] TypeScript declarations contain errors",
                extra={
                    "event": "typecheck.failed",
                    "exit_code": result.returncode,
                    "payload_preview": diagnostics[:50],
                },
            )
            raise TypeCheckError(diagnostics)
        logger.info(
            "checked %s declaration files",
            len(relative),
            extra={"event": "typecheck.passed", "duration_ms": result.duration_ms},
        )
        return relative

    def _relative(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self._project_root.resolve()).as_posix()
        except ValueError:
            return str(path)
