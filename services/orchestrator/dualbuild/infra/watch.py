"""监听模式：源文件变化时批量触发一次重建，运行期间的新变化合并到下一批。"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from dualbuild.domain.errors import BuildError
from dualbuild.infra.testing.discovery import matches_any

logger = logging.getLogger(__name__)


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, root: Path, patterns: Sequence[str], notify: Callable[[Path], None]) -> None:
        super().__init__()
        self._root = root.resolve()
        self._patterns = list(patterns)
        self._notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        for raw in (event.src_path, getattr(event, "dest_path", "")):
            if not raw:
                continue
            path = Path(str(raw))
            try:
                relative = path.resolve().relative_to(self._root).as_posix()
            except ValueError:
                continue
            if matches_any(relative, self._patterns):
                self._notify(path)
                return


class BatchWatcher:
    """监听若干目录；每批变化只调用一次 on_change，构建失败仅记录日志，循环继续。"""

    def __init__(
        self,
        roots: Sequence[tuple[Path, Sequence[str]]],
        on_change: Callable[[list[Path]], None],
        *,
        debounce_seconds: float = 0.5,
    ) -> None:
        self._roots = [(root, list(patterns)) for root, patterns in roots]
        self._on_change = on_change
        self._debounce_seconds = debounce_seconds
        self._pending: set[Path] = set()
        self._lock = threading.Lock()
        self._changed = threading.Event()
        self._stop = threading.Event()

    def notify(self, path: Path) -> None:
        with self._lock:
            self._pending.add(path)
        self._changed.set()

    def stop(self) -> None:
        self._stop.set()
        self._changed.set()

    def take_batch(self) -> list[Path]:
        with self._lock:
            batch = sorted(self._pending)
            self._pending.clear()
            self._changed.clear()
        return batch

    def run_batch(self) -> bool:
        """处理一批待定变化；返回本批是否成功。"""
        batch = self.take_batch()
        if not batch:
            return True
        logger.info(
            "%s file(s) changed, rebuilding",
            len(batch),
            extra={"event": "watch.triggered", "payload_preview": [str(item) for item in batch[:20]]},
        )
        try:
            self._on_change(batch)
        except BuildError as exc:
            logger.error(
                "rebuild failed: %s",
                exc,
                extra={"event": "watch.rebuild.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return False
        return True

    def run_forever(self) -> None:
        observer = Observer()
        for root, patterns in self._roots:
            if root.is_dir():
                observer.schedule(_ChangeHandler(root, patterns, self.notify), str(root), recursive=True)
        observer.daemon = True
        observer.start()
        logger.info(
            "watching for changes",
            extra={"event": "watch.started", "payload_preview": [str(root) for root, _ in self._roots]},
        )
        try:
            while not self._stop.is_set():
                if not self._changed.wait(timeout=0.5):
                    continue
                if self._stop.wait(timeout=self._debounce_seconds):
                    break
                self.run_batch()
        finally:
            observer.stop()
            observer.join()
            logger.info("watch stopped", extra={"event": "watch.stopped"})
