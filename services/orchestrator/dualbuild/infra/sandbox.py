"""沙箱安装：以外部使用者的方式，从本地路径真实安装刚构建的服务端产物。"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path

from dualbuild.domain.errors import InstallError, ToolError
from dualbuild.infra.storage.workspace import empty_dir, write_text
from dualbuild.infra.tools.runner import ToolRunner

logger = logging.getLogger(__name__)


class SandboxInstaller:
    """清空沙箱目录、写入最小 package.json 并执行依赖安装。"""

    def __init__(
        self,
        *,
        sandbox_dir: Path,
        package_name: str,
        package_path: Path,
        runner: ToolRunner,
        install_command: Sequence[str],
    ) -> None:
        self._sandbox_dir = sandbox_dir
        self._package_name = package_name
        self._package_path = package_path
        self._runner = runner
        self._install_command = list(install_command)

    def descriptor(self) -> dict[str, object]:
        """沙箱 package.json：依赖通过本地路径引用，而非注册表。"""
        return {
            "private": True,
            "dependencies": {self._package_name: str(self._package_path.resolve())},
        }

    def prepare(self) -> Path:
        empty_dir(self._sandbox_dir)
        return write_text(
            self._sandbox_dir / "package.json",
            json.dumps(self.descriptor(), ensure_ascii=False, indent=2) + "\n",
        )

    async def install(self) -> Path:
        """执行安装；工具缺失或非零退出均抛出 InstallError，依赖它的测试任务不会启动。"""
        if not self._install_command:
            raise InstallError(self._sandbox_dir, "install command is not configured")
        await asyncio.to_thread(self.prepare)
        try:
            result = await self._runner.run(self._install_command, cwd=self._sandbox_dir, op="sandbox.install")
        except FileNotFoundError as exc:
            raise InstallError(self._sandbox_dir, f"executable not found: {exc}") from exc
        except ToolError as exc:
            raise InstallError(self._sandbox_dir, str(exc)) from exc
        if not result.ok:
            raise InstallError(self._sandbox_dir, f"exit code {result.returncode}: {result.output or '<no output>'}")
        logger.info(
            "installed %s into sandbox",
            self._package_name,
            extra={"event": "sandbox.installed", "duration_ms": result.duration_ms},
        )
        return self._sandbox_dir
