"""测试夹具：在临时目录中构造最小的双目标 JS 项目，并以 Python 子进程替代外部工具。"""

from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

from dualbuild.config import Settings

PASS_COMMAND = [sys.executable, "-c", "import sys; sys.exit(0)"]
MINIFY_COMMAND = [sys.executable, "-c", "import sys; sys.stdout.write(' '.join(sys.stdin.read().split()))"]


def python_command(code: str) -> str:
    """返回可写入 Settings 命令字段的 shell 字符串。"""
    return shlex.join([sys.executable, "-c", code])


def write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """服务端/浏览器双实现模块 + 两类测试文件 + 版本文件。"""
    root = tmp_path / "driver"
    write(
        root,
        "src/index.js",
        "var channel = require('./internal/node');\n"
        "var util = require('./util');\n"
        "var VERSION = require('./version');\n"
        "module.exports = { channel: channel, util: util, version: VERSION };\n",
    )
    write(root, "src/util.js", "module.exports = { add: function (a, b) { return a + b; } };\n")
    write(root, "src/version.js", "module.exports = '0.0.0-dev';\n")
    write(root, "src/internal/node/index.js", "var net = require('net');\nmodule.exports = { kind: 'node', net: net };\n")
    write(root, "src/internal/browser/index.js", "module.exports = { kind: 'browser' };\n")
    write(root, "test/util.test.js", "var util = require('../src/util');\nif (util.add(1, 2) !== 3) throw new Error('add');\n")
    write(root, "test/internal/node/channel.test.js", "require('net');\n")
    write(root, "test/internal/browser/channel.test.js", "var c = require('../../../src/index');\n")
    write(root, "test/examples.test.js", "require('some-unbundled-example');\n")
    write(root, "package.json", '{"name": "neo4j-driver", "main": "lib/index.js"}\n')
    return root


LAUNCHER_SCRIPT = """\
import os
import sys

engine = os.environ["DUALBUILD_ENGINE"]
with open(os.environ["DUALBUILD_TEST_BUNDLE"], encoding="utf-8") as handle:
    failing = "FAILING_ASSERTION" in handle.read()
print(f"{engine}: 3 specs, {int(failing)} failures")
sys.exit(1 if failing else 0)
"""


def install_launcher(project: Path, engines: tuple[str, ...] = ("firefox",)) -> str:
    """写入模拟浏览器启动器与各引擎配置文件，返回启动器命令。

    启动器读取测试包：包含 FAILING_ASSERTION 时以 1 退出，模拟一条失败断言。
    """
    script = write(project, "tools/fake_launcher.py", LAUNCHER_SCRIPT)
    for engine in engines:
        write(project, f"test/browser/karma-{engine}.conf.js", f"// {engine}\n")
    return shlex.join([sys.executable, str(script)])


def make_settings(project: Path, **overrides: object) -> Settings:
    """外部工具默认全部替换为立即成功的 Python 子进程。"""
    values: dict[str, object] = {
        "project_root": project,
        "transpile_command": "",
        "minify_command": shlex.join(MINIFY_COMMAND),
        "install_command": shlex.join(PASS_COMMAND),
        "server_test_command": shlex.join(PASS_COMMAND),
        "typecheck_command": shlex.join(PASS_COMMAND),
        "fixture_command": shlex.join(PASS_COMMAND),
        "fixture_health_url": "",
        "browser_launcher_command": install_launcher(project),
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(project: Path) -> Settings:
    return make_settings(project)
