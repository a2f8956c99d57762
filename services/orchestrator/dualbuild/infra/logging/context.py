"""日志上下文：基于 contextvars 透传 run/task/engine 标识。"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator

_UNSET = object()

_run_id_var: ContextVar[str | None] = ContextVar("log_run_id", default=None)
_task_name_var: ContextVar[str | None] = ContextVar("log_task_name", default=None)
_engine_var: ContextVar[str | None] = ContextVar("log_engine", default=None)

CONTEXT_KEYS = ("run_id", "task_name", "engine")


def get_log_context() -> dict[str, str | None]:
    """返回当前协程/线程下的日志上下文字段。"""
    return {
        "run_id": _run_id_var.get(),
        "task_name": _task_name_var.get(),
        "engine": _engine_var.get(),
    }


@contextmanager
def bind_log_context(
    *,
    run_id: str | None | object = _UNSET,
    task_name: str | None | object = _UNSET,
    engine: str | None | object = _UNSET,
) -> Iterator[None]:
    """在上下文范围内绑定日志字段，并在退出时自动恢复。"""
    tokens: list[tuple[ContextVar[Any], Token[Any]]] = []
    if run_id is not _UNSET:
        tokens.append((_run_id_var, _run_id_var.set(run_id)))
    if task_name is not _UNSET:
        tokens.append((_task_name_var, _task_name_var.set(task_name)))
    if engine is not _UNSET:
        tokens.append((_engine_var, _engine_var.set(engine)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
