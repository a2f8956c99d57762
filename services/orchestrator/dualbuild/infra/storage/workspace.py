"""输出目录管理器：统一构建产物目录布局，并提供清空与写入工具。"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from dualbuild.config import Settings


def empty_dir(path: Path) -> Path:
    """确保目录存在且为空；目录内容均可再生，直接删除。"""
    if path.exists():
        if not path.is_dir():
            raise NotADirectoryError(str(path))
        for child in path.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
    else:
        path.mkdir(parents=True, exist_ok=True)
    return path


def write_text(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@dataclass(slots=True)
class OutputLayout:
    """一次运行使用的全部路径，均由 Settings 解析为绝对路径。"""
    project_root: Path
    source_dir: Path
    test_dir: Path
    lib_dir: Path
    browser_lib_dir: Path
    build_dir: Path
    browser_test_dir: Path
    sandbox_dir: Path
    reports_dir: Path

    @classmethod
    def from_settings(cls, settings: Settings) -> "OutputLayout":
        lib_dir = settings.resolve(settings.lib_dir)
        build_dir = settings.resolve(settings.build_dir)
        return cls(
            project_root=settings.resolve(settings.project_root),
            source_dir=settings.resolve(settings.source_dir),
            test_dir=settings.resolve(settings.test_dir),
            lib_dir=lib_dir,
            browser_lib_dir=lib_dir / "browser",
            build_dir=build_dir,
            browser_test_dir=build_dir / "browser",
            sandbox_dir=build_dir / "sandbox",
            reports_dir=build_dir / "reports",
        )

    def clean(self) -> None:
        """删除全部可再生输出目录。"""
        for path in (self.lib_dir, self.build_dir):
            if path.exists():
                shutil.rmtree(path)
