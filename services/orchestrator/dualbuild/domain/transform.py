"""源码转换：将以服务端后缀结尾的模块引用改写为浏览器端兄弟模块。

引用只从 esprima 词法单元中识别，注释与普通字符串里的 require/import 字样不会被当作引用。
转换只做后缀比较，已改写的引用不再匹配服务端后缀，因此重复应用结果不变。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import esprima
from esprima.error_handler import Error as EsprimaError

from dualbuild.domain.enums import EnvironmentTarget
from dualbuild.domain.errors import SourceSyntaxError


@dataclass(slots=True, frozen=True)
class _ReferenceToken:
    """源码中一个模块引用字符串字面量的位置（含引号）。"""
    start: int
    end: int
    quote: str
    target: str


def _is(token: Any, kind: str, value: str | None = None) -> bool:
    if token is None or token.type != kind:
        return False
    return value is None or token.value == value


def _scan_references(code: str) -> list[_ReferenceToken]:
    """识别以下位置的字符串字面量：
    - require('x') / import('x')：前为 "(" 与 require/import，后为 ")"，且不是成员调用 obj.require('x')；
    - import ... from 'x' / export ... from 'x'：前为 from；
    - import 'x'：前为 import 关键字。
    """
    try:
        tokens = esprima.tokenize(code, {"range": True})
    except EsprimaError as exc:
        raise SourceSyntaxError(str(exc)) from exc

    found: list[_ReferenceToken] = []
    for index, token in enumerate(tokens):
        if token.type != "String":
            continue
        prev1 = tokens[index - 1] if index >= 1 else None
        prev2 = tokens[index - 2] if index >= 2 else None
        prev3 = tokens[index - 3] if index >= 3 else None
        after = tokens[index + 1] if index + 1 < len(tokens) else None

        is_call = (
            _is(prev1, "Punctuator", "(")
            and (_is(prev2, "Identifier", "require") or _is(prev2, "Keyword", "import"))
            and _is(after, "Punctuator", ")")
            and not _is(prev3, "Punctuator", ".")
        )
        is_clause = _is(prev1, "Identifier", "from") or _is(prev1, "Keyword", "import")
        if not (is_call or is_clause):
            continue
        start, end = token.range
        raw = token.value
        found.append(_ReferenceToken(start, end, raw[0], raw[1:-1]))
    return found


def classify_reference(reference: str) -> EnvironmentTarget | None:
    """按后缀判定引用指向哪个环境的实现；普通引用返回 None。"""
    for target in EnvironmentTarget:
        if reference.endswith(target.suffix):
            return target
    return None


def rewrite_reference(reference: str, target: EnvironmentTarget = EnvironmentTarget.browser) -> str:
    """返回引用在目标环境下应解析到的字面量。"""
    if target is not EnvironmentTarget.browser:
        return reference
    if classify_reference(reference) is not EnvironmentTarget.server:
        return reference
    stem = reference[: -len(EnvironmentTarget.server.suffix)]
    return stem + EnvironmentTarget.browser.suffix


class SourceTransform(Enum):
    """单个产物适用的唯一转换策略。"""
    IDENTITY = EnvironmentTarget.server
    NODE_TO_BROWSER = EnvironmentTarget.browser

    @classmethod
    def for_environment(cls, environment: EnvironmentTarget) -> "SourceTransform":
        return cls(environment)

    def apply(self, reference: str) -> str:
        return rewrite_reference(reference, self.value)

    def rewrite_source(self, code: str) -> str:
        """改写源码中所有引用字面量；IDENTITY 策略原样返回。"""
        if self is SourceTransform.IDENTITY:
            return code
        parts: list[str] = []
        cursor = 0
        for item in _scan_references(code):
            rewritten = self.apply(item.target)
            if rewritten == item.target:
                continue
            parts.append(code[cursor : item.start])
            parts.append(f"{item.quote}{rewritten}{item.quote}")
            cursor = item.end
        parts.append(code[cursor:])
        return "".join(parts)


def find_references(code: str) -> list[str]:
    """按出现顺序列出源码中的模块引用字面量（去重）。"""
    seen: dict[str, None] = {}
    for item in _scan_references(code):
        seen.setdefault(item.target, None)
    return list(seen)
