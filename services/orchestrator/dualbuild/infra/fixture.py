"""集成测试夹具：通过控制脚本启动/停止类数据库外部服务，并做一次 HTTP 健康检查。"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import httpx

from dualbuild.domain.errors import BuildError, ToolError
from dualbuild.infra.tools.runner import ToolRunner

logger = logging.getLogger(__name__)


class FixtureError(BuildError):
    pass


class FixtureController:
    """夹具生命周期：`<command> start <home> [args]` / `<command> stop <home>`，控制脚本需阻塞至就绪。"""

    def __init__(
        self,
        *,
        runner: ToolRunner,
        command: Sequence[str],
        home: Path,
        extra_args: Sequence[str] = (),
        health_url: str | None = None,
        timeout_seconds: float = 10,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._runner = runner
        self._command = list(command)
        self._home = home
        self._extra_args = list(extra_args)
        self._health_url = health_url
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def start(self) -> dict[str, Any] | None:
        self._home.mkdir(parents=True, exist_ok=True)
        await self._control("start", *self._extra_args)
        return await asyncio.to_thread(self.health)

    async def stop(self) -> None:
        await self._control("stop")

    async def _control(self, action: str, *args: str) -> None:
        if not self._command:
            raise FixtureError("fixture command is not configured")
        command = [*self._command, action, str(self._home), *args]
        try:
            result = await self._runner.run(command, op=f"fixture.{action}")
        except FileNotFoundError as exc:
            raise FixtureError(f"fixture control script not found: {exc}") from exc
        except ToolError as exc:
            raise FixtureError(f"fixture {action} failed: {exc}") from exc
        if not result.ok:
            raise FixtureError(f"fixture {action} failed with exit code {result.returncode}: {result.output}")
        logger.info("fixture %s completed", action, extra={"event": f"fixture.{action}.succeeded", "op": action})

    def health(self) -> dict[str, Any] | None:
        """调用夹具的 HTTP 入口确认服务可达；未配置 URL 时跳过。"""
        if not self._health_url:
            return None
        started = time.perf_counter()
        try:
            with httpx.Client(timeout=httpx.Timeout(self._timeout_seconds), transport=self._transport) as client:
                response = client.get(self._health_url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(
                "fixture health check failed",
                extra={
                    "event": "fixture.health.failed",
                    "op": "fixture.health",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise FixtureError(f"fixture is not reachable at {self._health_url}: {exc}") from exc
        try:
            payload = response.json()
        except ValueError:
            payload = {"body": response.text[:200]}
        return payload if isinstance(payload, dict) else {"body": payload}
