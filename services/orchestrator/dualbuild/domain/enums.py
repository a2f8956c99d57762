"""领域枚举定义：统一目标环境、产物类型、任务状态与测试结果取值。"""

from __future__ import annotations

from enum import Enum


class EnvironmentTarget(str, Enum):
    """双实现模块的目标运行环境，value 即模块引用的保留后缀。"""
    server = "/node"
    browser = "/browser"

    @property
    def suffix(self) -> str:
        return self.value


class ArtifactKind(str, Enum):
    """构建产物类型枚举。"""
    server_tree = "server_tree"
    browser_bundle = "browser_bundle"
    browser_bundle_min = "browser_bundle_min"
    test_bundle = "test_bundle"


class TaskState(str, Enum):
    """任务单次运行中的生命周期状态。"""
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"


class ResultStatus(str, Enum):
    """单个 (环境, 套件) 测试记录的结果。"""
    passed = "passed"
    failed = "failed"
    error = "error"
