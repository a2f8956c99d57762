"""领域数据结构定义：构建产物与测试结果等核心值对象。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from dualbuild.domain.enums import ArtifactKind, EnvironmentTarget, ResultStatus


@dataclass(slots=True)
class BuildArtifact:
    """构建产物描述：目标环境、入口文件与输出位置。"""
    kind: ArtifactKind
    environment: EnvironmentTarget
    entry_points: list[Path]
    output_path: Path
    modules: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TestRunResult:
    """单个 (环境, 套件) 的测试结果记录。"""
    __test__ = False

    environment: str
    suite: str
    status: ResultStatus
    diagnostics: str | None = None

    @property
    def passed(self) -> bool:
        return self.status is ResultStatus.passed
