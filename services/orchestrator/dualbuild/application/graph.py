"""任务图：显式构造的命名任务集合，不使用进程级全局注册表。"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from dualbuild.domain.errors import CycleError, DuplicateTaskError, UnknownTaskError

Action = Callable[[], Any | Awaitable[Any]]


@dataclass(slots=True, frozen=True)
class Task:
    """任务声明：名称、前置任务、动作，以及前置任务是否需按顺序执行。"""
    name: str
    prerequisites: tuple[str, ...] = ()
    action: Action | None = None
    ordered: bool = False
    description: str = ""


class TaskGraph:
    """有向无环任务图，声明期只登记，执行交给 TaskExecutor。"""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    def declare(
        self,
        name: str,
        prerequisites: Iterable[str] = (),
        action: Action | None = None,
        *,
        description: str = "",
    ) -> Task:
        """登记任务；互相之间没有顺序关系的前置任务可并发执行。"""
        return self._add(Task(name, tuple(prerequisites), action, False, description))

    def series(self, name: str, steps: Iterable[str], action: Action | None = None, *, description: str = "") -> Task:
        """登记按顺序执行前置步骤的任务，前一步完成后才启动下一步。"""
        return self._add(Task(name, tuple(steps), action, True, description))

    def _add(self, task: Task) -> Task:
        if not task.name:
            raise ValueError("task name is required")
        if task.name in self._tasks:
            raise DuplicateTaskError(f"task already declared: {task.name}")
        self._tasks[task.name] = task
        return task

    def get(self, name: str) -> Task:
        try:
            return self._tasks[name]
        except KeyError as exc:
            raise UnknownTaskError(f"unknown task: {name}") from exc

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def names(self) -> list[str]:
        return list(self._tasks)

    def all(self) -> list[Task]:
        return list(self._tasks.values())

    def closure(self, name: str) -> list[str]:
        """返回目标任务及其传递前置任务（拓扑序），同时校验无环与名称存在。"""
        order: list[str] = []
        state: dict[str, int] = {}
        stack: list[str] = []

        def visit(current: str) -> None:
            mark = state.get(current)
            if mark == 2:
                return
            if mark == 1:
                start = stack.index(current)
                raise CycleError(stack[start:] + [current])
            task = self.get(current)
            state[current] = 1
            stack.append(current)
            for prerequisite in task.prerequisites:
                visit(prerequisite)
            stack.pop()
            state[current] = 2
            order.append(current)

        visit(name)
        return order

    def validate(self) -> None:
        """校验整张图：所有前置任务已声明且不存在环。"""
        for name in self._tasks:
            self.closure(name)
