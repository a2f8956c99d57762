"""浏览器产物构建：完整包、压缩包与测试包共用同一打包流程与转换策略。"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from dualbuild.domain.enums import ArtifactKind, EnvironmentTarget
from dualbuild.domain.models import BuildArtifact
from dualbuild.domain.transform import SourceTransform
from dualbuild.infra.builders.bundler import Bundler
from dualbuild.infra.storage.workspace import write_text
from dualbuild.infra.tools.runner import ToolRunner

logger = logging.getLogger(__name__)


class BrowserArtifactBuilder:
    """构建浏览器端产物；所有浏览器产物统一使用 NODE_TO_BROWSER 转换。"""

    transform = SourceTransform.for_environment(EnvironmentTarget.browser)

    def __init__(
        self,
        *,
        project_root: Path,
        runner: ToolRunner,
        transpile_command: Sequence[str] = (),
        minify_command: Sequence[str] = (),
        concurrency: int = 8,
    ) -> None:
        self._project_root = project_root
        self._runner = runner
        self._minify_command = list(minify_command)
        self._bundler = Bundler(
            project_root=project_root,
            transform=self.transform,
            runner=runner,
            transpile_command=transpile_command,
            concurrency=concurrency,
        )

    async def build_library(
        self,
        *,
        entry_point: Path,
        output_dir: Path,
        bundle_name: str,
        standalone: str,
    ) -> list[BuildArtifact]:
        """输出 <name>.js 与 <name>.min.js；压缩版由同一份打包文本经压缩器生成。"""
        result = await self._bundler.bundle([entry_point], standalone=standalone)
        modules = [item.module_id for item in result.modules]

        full_path = write_text(output_dir / f"{bundle_name}.js", result.text)
        minified = await self._runner.pipe(self._minify_command, result.text, cwd=self._project_root, op="minify")
        min_path = write_text(output_dir / f"{bundle_name}.min.js", minified)
        logger.info(
            "browser bundles written",
            extra={
                "event": "build.browser.completed",
                "payload_preview": {"full": str(full_path), "minified": str(min_path), "modules": len(modules)},
            },
        )
        return [
            BuildArtifact(ArtifactKind.browser_bundle, EnvironmentTarget.browser, [entry_point], full_path, modules),
            BuildArtifact(ArtifactKind.browser_bundle_min, EnvironmentTarget.browser, [entry_point], min_path, modules),
        ]

    async def build_tests(self, *, test_files: Sequence[Path], output_path: Path) -> BuildArtifact:
        """把全部浏览器测试文件打成单个脚本，供各浏览器引擎加载。"""
        if not test_files:
            raise ValueError("no browser test files discovered")
        result = await self._bundler.bundle(list(test_files), debug=True)
        write_text(output_path, result.text)
        logger.info(
            "browser test bundle written",
            extra={
                "event": "build.browser_test.completed",
                "payload_preview": {"path": str(output_path), "specs": len(test_files), "modules": len(result.modules)},
            },
        )
        return BuildArtifact(
            kind=ArtifactKind.test_bundle,
            environment=EnvironmentTarget.browser,
            entry_points=list(test_files),
            output_path=output_path,
            modules=[item.module_id for item in result.modules],
        )
