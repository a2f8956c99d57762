"""版本写入：校验外部传入的语义化版本号，并替换指定源文件中的唯一占位符。"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from dualbuild.domain.errors import BuildError, InvalidVersionError

logger = logging.getLogger(__name__)

# semver 2.0.0 官方语法；首尾空白与至多一个前导 "v" 在校验前剥离。
SEMVER_RE = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def clean_version(raw: object) -> str:
    """返回规范化版本字符串；不合法时抛出 InvalidVersionError。"""
    if not isinstance(raw, str):
        raise InvalidVersionError(raw)
    text = raw.strip()
    if text.startswith("v"):
        text = text[1:]
    if not SEMVER_RE.match(text):
        raise InvalidVersionError(raw)
    return text


@dataclass(slots=True)
class StampResult:
    version: str
    path: Path


class VersionStamper:
    """把 placeholder 替换为版本号；只改写 version_file 这一个文件。"""

    def __init__(self, version_file: Path, placeholder: str = "0.0.0-dev") -> None:
        self._version_file = version_file
        self._placeholder = placeholder

    def stamp(self, version: object) -> StampResult:
        cleaned = clean_version(version)
        # 按字节替换，保证占位符以外的内容（含换行符）逐字节不变。
        content = self._version_file.read_bytes()
        token = self._placeholder.encode("utf-8")
        occurrences = content.count(token)
        if occurrences != 1:
            raise BuildError(
                f"expected exactly one '{self._placeholder}' placeholder in {self._version_file}, found {occurrences}"
            )
        self._version_file.write_bytes(content.replace(token, cleaned.encode("utf-8"), 1))
        logger.info(
            "version set to %s",
            cleaned,
            extra={"event": "version.stamped", "payload_preview": {"file": str(self._version_file)}},
        )
        return StampResult(version=cleaned, path=self._version_file)
