"""服务端产物构建：逐文件转译源码树到 lib/，不做任何模块引用改写。"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

from dualbuild.domain.enums import ArtifactKind, EnvironmentTarget
from dualbuild.domain.models import BuildArtifact
from dualbuild.domain.transform import SourceTransform
from dualbuild.infra.storage.workspace import write_text
from dualbuild.infra.tools.runner import ToolRunner

logger = logging.getLogger(__name__)


class NodeArtifactBuilder:
    """将 source_dir/**/*.js 转译到 output_dir，保持目录结构。"""

    transform = SourceTransform.for_environment(EnvironmentTarget.server)

    def __init__(
        self,
        *,
        source_dir: Path,
        output_dir: Path,
        runner: ToolRunner,
        transpile_command: Sequence[str] = (),
        concurrency: int = 8,
    ) -> None:
        self._source_dir = source_dir
        self._output_dir = output_dir
        self._runner = runner
        self._transpile_command = list(transpile_command)
        self._concurrency = max(1, concurrency)

    def sources(self) -> list[Path]:
        return sorted(path for path in self._source_dir.rglob("*.js") if path.is_file())

    async def build(self) -> BuildArtifact:
        sources = self.sources()
        semaphore = asyncio.Semaphore(self._concurrency)

        async def compile_one(path: Path) -> str:
            relative = path.relative_to(self._source_dir)
            async with semaphore:
                code = await self._runner.pipe(
                    self._transpile_command,
                    path.read_text(encoding="utf-8-sig"),
                    cwd=self._source_dir,
                    op=f"transpile {relative.as_posix()}",
                )
            write_text(self._output_dir / relative, self.transform.rewrite_source(code))
            return relative.as_posix()

        modules = await asyncio.gather(*(compile_one(path) for path in sources))
        logger.info(
            "compiled %s modules into %s",
            len(modules),
            self._output_dir,
            extra={"event": "build.server.completed"},
        )
        return BuildArtifact(
            kind=ArtifactKind.server_tree,
            environment=EnvironmentTarget.server,
            entry_points=sources,
            output_path=self._output_dir,
            modules=list(modules),
        )
