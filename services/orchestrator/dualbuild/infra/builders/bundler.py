"""打包器：从入口解析完整引用图，逐文件转译并应用环境转换，输出单个自包含脚本。"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from dualbuild.domain.errors import ResolutionError
from dualbuild.domain.transform import SourceTransform, find_references
from dualbuild.infra.tools.runner import ToolRunner

logger = logging.getLogger(__name__)

_FILE_SUFFIXES = ("", ".js", ".json")
_INDEX_FILES = ("index.js", "index.json")


@dataclass(slots=True)
class ModuleRecord:
    """已解析模块：模块 ID（相对项目根的 posix 路径）、转换后代码与依赖映射。"""
    module_id: str
    path: Path
    code: str
    dependencies: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class BundleResult:
    text: str
    modules: list[ModuleRecord]
    entry_ids: list[str]


class ModuleResolver:
    """按 CommonJS 规则把引用字面量解析为磁盘文件。"""

    def __init__(self, project_root: Path, *, prefer_browser_field: bool = True) -> None:
        self._project_root = project_root.resolve()
        self._prefer_browser_field = prefer_browser_field

    def resolve(self, reference: str, including_file: Path) -> Path:
        """解析引用；找不到时抛出 ResolutionError（携带引用与所在文件）。"""
        if reference.startswith(("./", "../", "/")) or reference in {".", ".."}:
            base = Path(reference) if reference.startswith("/") else including_file.parent / reference
            found = self._resolve_path(base)
        else:
            found = self._resolve_package(reference, including_file)
        if found is None:
            raise ResolutionError(reference, including_file)
        return found.resolve()

    def _resolve_path(self, base: Path) -> Path | None:
        for suffix in _FILE_SUFFIXES:
            candidate = base.with_name(base.name + suffix) if suffix else base
            if candidate.is_file():
                return candidate
        if base.is_dir():
            main = self._package_main(base)
            if main is not None:
                return main
            for index in _INDEX_FILES:
                candidate = base / index
                if candidate.is_file():
                    return candidate
        return None

    def _resolve_package(self, reference: str, including_file: Path) -> Path | None:
        parts = reference.split("/")
        if reference.startswith("@") and len(parts) >= 2:
            package, subpath = "/".join(parts[:2]), "/".join(parts[2:])
        else:
            package, subpath = parts[0], "/".join(parts[1:])
        if not package:
            return None
        for directory in self._search_dirs(including_file):
            package_dir = directory / "node_modules" / package
            if not package_dir.is_dir():
                continue
            if subpath:
                return self._resolve_path(package_dir / subpath)
            return self._resolve_path(package_dir)
        return None

    def _search_dirs(self, including_file: Path) -> list[Path]:
        """从所在目录向上查找 node_modules，最多到项目根。"""
        directories: list[Path] = []
        current = including_file.parent.resolve()
        while True:
            directories.append(current)
            if current == self._project_root or current.parent == current:
                break
            current = current.parent
        if self._project_root not in directories:
            directories.append(self._project_root)
        return directories

    def _package_main(self, package_dir: Path) -> Path | None:
        descriptor = package_dir / "package.json"
        if not descriptor.is_file():
            return None
        try:
            data = json.loads(descriptor.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        fields = ("browser", "main") if self._prefer_browser_field else ("main",)
        for key in fields:
            value = data.get(key)
            if isinstance(value, str) and value:
                found = self._resolve_path(package_dir / value)
                if found is not None:
                    return found
        return None


class Bundler:
    """单次打包：同一引用图、同一转换策略，可渲染为完整或独立（UMD）脚本。"""

    def __init__(
        self,
        *,
        project_root: Path,
        transform: SourceTransform,
        runner: ToolRunner,
        transpile_command: Sequence[str] = (),
        concurrency: int = 8,
    ) -> None:
        self._project_root = project_root.resolve()
        self._transform = transform
        self._runner = runner
        self._transpile_command = list(transpile_command)
        self._concurrency = max(1, concurrency)
        self._resolver = ModuleResolver(project_root, prefer_browser_field=transform is SourceTransform.NODE_TO_BROWSER)

    def module_id(self, path: Path) -> str:
        resolved = path.resolve()
        try:
            return resolved.relative_to(self._project_root).as_posix()
        except ValueError:
            return resolved.as_posix()

    async def collect(self, entry_points: Sequence[Path]) -> list[ModuleRecord]:
        """广度优先解析传递引用图；同一层级的文件并发转译，同时运行的转译进程数受 concurrency 限制。"""
        if not entry_points:
            raise ValueError("at least one entry point is required")
        modules: dict[str, ModuleRecord] = {}
        semaphore = asyncio.Semaphore(self._concurrency)
        frontier = [path.resolve() for path in entry_points]
        for path in frontier:
            if not path.is_file():
                raise ResolutionError(str(path), path.parent)
        while frontier:
            batch: list[Path] = []
            for path in frontier:
                module_id = self.module_id(path)
                if module_id not in modules and path not in batch:
                    batch.append(path)
            if not batch:
                break
            loaded = await asyncio.gather(*(self._load(path, semaphore) for path in batch))
            frontier = []
            for record, references in loaded:
                modules[record.module_id] = record
                for reference in references:
                    target = self._resolver.resolve(reference, record.path)
                    record.dependencies[reference] = self.module_id(target)
                    if self.module_id(target) not in modules:
                        frontier.append(target)
        return list(modules.values())

    async def _load(self, path: Path, semaphore: asyncio.Semaphore) -> tuple[ModuleRecord, list[str]]:
        source = path.read_text(encoding="utf-8-sig")
        module_id = self.module_id(path)
        if path.suffix == ".json":
            return ModuleRecord(module_id, path, f"module.exports = {source.strip()};\n"), []
        async with semaphore:
            code = await self._runner.pipe(
                self._transpile_command, source, cwd=self._project_root, op=f"transpile {module_id}"
            )
        code = self._transform.rewrite_source(code)
        return ModuleRecord(module_id, path, code), find_references(code)

    async def bundle(
        self,
        entry_points: Sequence[Path],
        *,
        standalone: str | None = None,
        debug: bool = False,
    ) -> BundleResult:
        modules = await self.collect(entry_points)
        entry_ids = [self.module_id(path) for path in entry_points]
        text = render_bundle(modules, entry_ids, standalone=standalone, debug=debug)
        logger.info(
            "bundled %s modules from %s entries",
            len(modules),
            len(entry_ids),
            extra={"event": "bundle.rendered", "payload_preview": {"entries": entry_ids, "transform": self._transform.name}},
        )
        return BundleResult(text=text, modules=modules, entry_ids=entry_ids)


def render_bundle(
    modules: Sequence[ModuleRecord],
    entry_ids: Sequence[str],
    *,
    standalone: str | None = None,
    debug: bool = False,
) -> str:
    """渲染模块注册表脚本；standalone 时以 UMD 方式导出首个入口。"""
    out: list[str] = []
    out.append("(function (root) {\n  'use strict';\n")
    out.append("  var __definitions = Object.create(null);\n  var __cache = Object.create(null);\n")
    out.append("  function __define(id, deps, fn) { __definitions[id] = { deps: deps, fn: fn }; }\n")
    out.append(
        "  function __load(id) {\n"
        "    if (__cache[id]) return __cache[id].exports;\n"
        "    var def = __definitions[id];\n"
        "    if (!def) throw new Error('Missing module: ' + id);\n"
        "    var module = { exports: {} };\n"
        "    __cache[id] = module;\n"
        "    function require(ref) {\n"
        "      if (!Object.prototype.hasOwnProperty.call(def.deps, ref)) {\n"
        "        throw new Error('Unresolved reference ' + ref + ' in ' + id);\n"
        "      }\n"
        "      return __load(def.deps[ref]);\n"
        "    }\n"
        "    def.fn.call(module.exports, require, module, module.exports);\n"
        "    return module.exports;\n"
        "  }\n\n"
    )
    for record in modules:
        if debug:
            out.append(f"  /* {record.module_id} */\n")
        deps = json.dumps(record.dependencies, sort_keys=True)
        out.append(f"  __define({json.dumps(record.module_id)}, {deps}, function (require, module, exports) {{\n")
        # 模块源码不缩进，避免改变多行模板字符串的内容。
        out.append(record.code if record.code.endswith("\n") else record.code + "\n")
        out.append("  });\n\n")

    if standalone:
        entry = json.dumps(entry_ids[0])
        name = json.dumps(standalone)
        out.append(f"  var __entry = __load({entry});\n")
        out.append(
            "  if (typeof module === 'object' && module.exports) { module.exports = __entry; }\n"
            "  else if (typeof define === 'function' && define.amd) { define([], function () { return __entry; }); }\n"
            f"  else {{ root[{name}] = __entry; }}\n"
        )
    else:
        for entry_id in entry_ids:
            out.append(f"  __load({json.dumps(entry_id)});\n")
    out.append("})(typeof self !== 'undefined' ? self : this);\n")
    if debug:
        out.append("/* modules: " + ", ".join(item.module_id for item in modules) + " */\n")
    return "".join(out)
