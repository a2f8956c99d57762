"""日志初始化：统一 JSON 结构、异步队列写入、控制台摘要与 DEBUG 路由开关。"""

from __future__ import annotations

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any

from dualbuild.config import Settings
from dualbuild.infra.logging.context import CONTEXT_KEYS, get_log_context

_listener: QueueListener | None = None

_SENSITIVE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)(password\s*[:=]\s*)[^\s,;]+"), r"\1***"),
    (re.compile(r"(?i)(token\s*[:=]\s*)[^\s,;]+"), r"\1***"),
    (re.compile(r"(?i)(//[^:/\s]+:)[^@/\s]+@"), r"\1***@"),
)


def redact_text(value: str | None, mode: str) -> str | None:
    """按模式脱敏文本，避免凭据（如 fixture 连接串中的密码）落盘。"""
    if value is None:
        return None
    text = str(value)
    if mode.lower() == "off":
        return text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    if mode.lower() == "strict":
        text = re.sub(r"(?i)(password|token)([^,\s}]*)", r"\1=***", text)
    return text


def render_payload_preview(payload: Any, *, max_chars: int, redaction_mode: str) -> str | None:
    """将 payload 转为截断后的预览文本，避免写入大对象（如完整工具输出）。"""
    if payload is None:
        return None
    if isinstance(payload, str):
        serialized = payload
    else:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str)
        except TypeError:
            serialized = str(payload)
    redacted = redact_text(serialized, redaction_mode) or ""
    if len(redacted) <= max_chars:
        return redacted
    return f"{redacted[:max_chars]}...(truncated)"


class DebugRoutingFilter(logging.Filter):
    """控制默认日志级别，并允许指定模块/任务名放行 DEBUG。"""

    def __init__(self, *, min_level: int, debug_modules: set[str], debug_tasks: set[str]) -> None:
        super().__init__()
        self._min_level = min_level
        self._debug_modules = debug_modules
        self._debug_tasks = debug_tasks

    def _module_debug_enabled(self, logger_name: str) -> bool:
        return any(logger_name == item or logger_name.startswith(f"{item}.") for item in self._debug_modules)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self._min_level:
            return True
        if record.levelno != logging.DEBUG:
            return False
        if self._module_debug_enabled(record.name):
            return True
        task_name = getattr(record, "task_name", None) or get_log_context().get("task_name")
        if task_name and task_name in self._debug_tasks:
            return True
        return False


class ContextInjectionFilter(logging.Filter):
    """在日志入队前将 contextvars 写入 record，避免跨线程丢失。"""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_log_context()
        for key in CONTEXT_KEYS:
            if getattr(record, key, None) is None and ctx.get(key) is not None:
                setattr(record, key, ctx[key])
        return True


class StructuredJsonFormatter(logging.Formatter):
    """将 LogRecord 规整为统一 JSON 行格式。"""

    def __init__(
        self,
        *,
        service: str,
        process_role: str,
        redaction_mode: str,
        payload_preview_chars: int,
    ) -> None:
        super().__init__()
        self._service = service
        self._process_role = process_role
        self._redaction_mode = redaction_mode
        self._payload_preview_chars = payload_preview_chars

    @staticmethod
    def _coerce_number(value: Any) -> int | float | None:
        if value is None:
            return None
        if isinstance(value, (int, float)):
            return value
        try:
            text = str(value)
            return int(text) if text.lstrip("-").isdigit() else float(text)
        except ValueError:
            return None

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()
        error_text = getattr(record, "error", None)
        if error_text is None and record.exc_info:
            error_text = self.formatException(record.exc_info)

        payload_preview = render_payload_preview(
            getattr(record, "payload_preview", None),
            max_chars=self._payload_preview_chars,
            redaction_mode=self._redaction_mode,
        )
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self._service,
            "process_role": self._process_role,
            "module": record.name,
            "event": getattr(record, "event", None),
            "run_id": getattr(record, "run_id", None) or ctx.get("run_id"),
            "task_name": getattr(record, "task_name", None) or ctx.get("task_name"),
            "engine": getattr(record, "engine", None) or ctx.get("engine"),
            "external_tool": getattr(record, "external_tool", None),
            "op": getattr(record, "op", None),
            "duration_ms": self._coerce_number(getattr(record, "duration_ms", None)),
            "exit_code": self._coerce_number(getattr(record, "exit_code", None)),
            "message": redact_text(record.getMessage(), self._redaction_mode),
            "error_type": getattr(record, "error_type", None),
            "error": redact_text(str(error_text), self._redaction_mode) if error_text is not None else None,
            "payload_preview": payload_preview,
        }
        return json.dumps(entry, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """控制台单行格式：时间 | 级别 | [任务] 消息。"""

    def __init__(self, redaction_mode: str) -> None:
        super().__init__(fmt="%(asctime)s | %(levelname)s | %(message)s", datefmt="%H:%M:%S")
        self._redaction_mode = redaction_mode

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        task_name = getattr(record, "task_name", None)
        if task_name:
            head, sep, tail = text.partition(" | ")
            level, sep2, message = tail.partition(" | ")
            text = f"{head}{sep}{level}{sep2}[{task_name}] {message}"
        return redact_text(text, self._redaction_mode) or ""


def _parse_level(level_text: str) -> int:
    return getattr(logging, str(level_text).upper(), logging.INFO)


def configure_logging(settings: Settings, *, process_role: str) -> Path:
    """初始化全局日志输出：JSONL 文件保留全部细节，stderr 输出人类可读摘要。"""
    global _listener
    shutdown_logging()

    log_root = settings.resolve(settings.log_dir)
    role_dir = log_root / process_role
    role_dir.mkdir(parents=True, exist_ok=True)
    log_file = role_dir / "dualbuild.jsonl"

    queue_obj: SimpleQueue[logging.LogRecord] = SimpleQueue()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "handlers": {
                "queue": {
                    "class": "logging.handlers.QueueHandler",
                    "queue": queue_obj,
                }
            },
            "root": {
                "level": "DEBUG",
                "handlers": ["queue"],
            },
        }
    )

    root_logger = logging.getLogger()
    queue_handler = next((item for item in root_logger.handlers if isinstance(item, QueueHandler)), None)
    if queue_handler is None:
        raise RuntimeError("queue logging handler is not configured")
    queue_handler.addFilter(ContextInjectionFilter())
    queue_handler.addFilter(
        DebugRoutingFilter(
            min_level=_parse_level(settings.log_level),
            debug_modules=set(settings.log_debug_modules_list()),
            debug_tasks=set(settings.log_debug_tasks_list()),
        )
    )

    file_handler = RotatingFileHandler(
        str(log_file),
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        StructuredJsonFormatter(
            service="dualbuild",
            process_role=process_role,
            redaction_mode=settings.log_redaction_mode,
            payload_preview_chars=settings.log_payload_preview_chars,
        )
    )

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setLevel(_parse_level(settings.log_console_level))
    stderr_handler.setFormatter(ConsoleFormatter(settings.log_redaction_mode))

    _listener = QueueListener(queue_obj, file_handler, stderr_handler, respect_handler_level=True)
    _listener.start()

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return log_file


def shutdown_logging() -> None:
    """停止队列监听器并关闭底层句柄。"""
    global _listener
    if _listener is None:
        return
    try:
        _listener.stop()
        for handler in _listener.handlers:
            try:
                handler.close()
            except OSError:
                pass
    finally:
        _listener = None
