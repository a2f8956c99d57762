"""外部工具执行器：以子进程调用黑盒工具（转译、压缩、安装、测试启动等）并记录结构化日志。"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from dualbuild.domain.errors import ToolError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolResult:
    """一次外部工具调用的结果。"""
    command: list[str]
    returncode: int
    stdout: str
    stderr: str
    duration_ms: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """合并后的原始输出，供诊断信息直接展示。"""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
        await process.wait()


class ToolRunner:
    """异步子进程执行器；不做任何重试，失败即交给调用方决定是否致命。"""

    def __init__(self, *, timeout_seconds: float | None = None, env: Mapping[str, str] | None = None) -> None:
        self._timeout_seconds = timeout_seconds
        self._env = dict(env) if env else None

    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        stdin: str | None = None,
        env: Mapping[str, str] | None = None,
        op: str | None = None,
    ) -> ToolResult:
        """执行命令并返回结果；可执行文件不存在时抛出 FileNotFoundError，超时抛出 ToolError（returncode 为 None）。"""
        args = [str(item) for item in command]
        if not args:
            raise ValueError("command is empty")
        merged_env: dict[str, str] | None = None
        if self._env or env:
            merged_env = {**os.environ, **(self._env or {}), **(env or {})}

        started = time.perf_counter()
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(stdin.encode("utf-8") if stdin is not None else None),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            await _kill(process)
            logger.warning(
                "tool %s timed out",
                Path(args[0]).name,
                extra={
                    "event": "tool.timed_out",
                    "external_tool": Path(args[0]).name,
                    "op": op,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            raise ToolError(args, None, f"timed out after {self._timeout_seconds}s") from exc
        except asyncio.CancelledError:
            # 整体中止时不遗留子进程。
            await _kill(process)
            raise
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        result = ToolResult(
            command=args,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            duration_ms=duration_ms,
        )
        level = logging.DEBUG if result.ok else logging.WARNING
        logger.log(
            level,
            "tool %s exited with %s",
            Path(args[0]).name,
            result.returncode,
            extra={
                "event": "tool.completed" if result.ok else "tool.failed",
                "external_tool": Path(args[0]).name,
                "op": op,
                "duration_ms": duration_ms,
                "exit_code": result.returncode,
                "payload_preview": {"args": args[1:], "cwd": str(cwd) if cwd else None},
            },
        )
        return result

    async def check(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        stdin: str | None = None,
        env: Mapping[str, str] | None = None,
        op: str | None = None,
    ) -> ToolResult:
        """执行命令，非零退出时抛出 ToolError（携带原始 stderr）。"""
        try:
            result = await self.run(command, cwd=cwd, stdin=stdin, env=env, op=op)
        except FileNotFoundError as exc:
            raise ToolError(list(command), None, f"executable not found: {exc}") from exc
        if not result.ok:
            raise ToolError(result.command, result.returncode, result.stderr or result.stdout)
        return result

    async def pipe(self, command: Sequence[str], text: str, *, cwd: Path | None = None, op: str | None = None) -> str:
        """将文本经 stdin 送入过滤型工具并返回 stdout；空命令表示原样透传。"""
        if not command:
            return text
        result = await self.check(command, cwd=cwd, stdin=text, op=op)
        return result.stdout
