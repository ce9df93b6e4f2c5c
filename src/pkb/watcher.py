"""File watching: debounce filesystem events and re-index changed files."""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .ingest.extractor import detect_type
from .models import DirectoryOptions, IndexOptions

logger = logging.getLogger(__name__)

IndexCallback = Callable[[Path, IndexOptions], Awaitable[str]]


class IngestHandler(FileSystemEventHandler):
    """Collects file events and debounces them."""

    def __init__(self, debounce: float = 1.0, root: Path | None = None):
        super().__init__()
        self._pending: set[str] = set()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._debounce = debounce
        self._root = root
        self._callback: Callable[[list[str]], None] | None = None

    def set_callback(self, callback: Callable[[list[str]], None]) -> None:
        self._callback = callback

    def _is_candidate(self, path: str) -> bool:
        """Skip hidden files and anything inside a hidden directory under the root."""
        p = Path(path)
        parts: tuple[str, ...] = (p.name,)
        if self._root is not None:
            try:
                parts = p.relative_to(self._root).parts
            except ValueError:
                pass
        return not any(part.startswith(".") for part in parts)

    def on_created(self, event):
        if not event.is_directory and self._is_candidate(event.src_path):
            self._add(event.src_path)

    def on_modified(self, event):
        if not event.is_directory and self._is_candidate(event.src_path):
            self._add(event.src_path)

    def on_moved(self, event):
        if not event.is_directory and self._is_candidate(event.dest_path):
            self._add(event.dest_path)

    def _add(self, path: str):
        with self._lock:
            self._pending.add(path)
            logger.debug("Detected change: %s", path)
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self._flush)
            self._timer.daemon = True
            self._timer.start()

    def _flush(self):
        with self._lock:
            paths = sorted(self._pending)
            self._pending.clear()
            self._timer = None
        if paths and self._callback:
            self._callback(paths)

    def cancel(self) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()


@dataclass
class WatchHandle:
    """One watched directory: its observer, options and dispatch state."""
    path: Path
    options: DirectoryOptions
    loop: asyncio.AbstractEventLoop
    handler: IngestHandler
    observer: Observer | None = None
    active: bool = True
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def accepts(self, file_path: Path) -> bool:
        """Whether a changed path should be (re)indexed right now."""
        if not file_path.exists() or not file_path.is_file():
            return False
        if self.options.file_types and detect_type(file_path) not in self.options.file_types:
            return False
        return True


class WatchRegistry:
    """Owns the active directory watches, keyed by resolved path."""

    def __init__(self, index: IndexCallback, debounce: float = 1.0):
        self._index = index
        self.debounce = debounce
        self._handles: dict[Path, WatchHandle] = {}
        self._lock = threading.Lock()

    def watch(self, path: Path, options: DirectoryOptions, loop: asyncio.AbstractEventLoop) -> WatchHandle:
        """Start watching ``path``. Watching the same path again replaces the old watch."""
        self.stop(path)

        handler = IngestHandler(debounce=self.debounce, root=path)
        handle = WatchHandle(path=path, options=options, loop=loop, handler=handler)
        handler.set_callback(lambda paths: self._schedule(handle, paths))

        observer = Observer()
        observer.schedule(handler, str(path), recursive=options.recursive)
        observer.daemon = True
        observer.start()
        handle.observer = observer

        with self._lock:
            self._handles[path] = handle
        logger.info("Watching %s for changes", path)
        return handle

    def _schedule(self, handle: WatchHandle, paths: list[str]) -> None:
        """Runs on the debounce timer thread; hands each path to the event loop."""
        if not handle.active:
            return
        for p in paths:
            try:
                asyncio.run_coroutine_threadsafe(self._dispatch(handle, Path(p)), handle.loop)
            except RuntimeError as e:
                logger.warning("Event loop unavailable, dropping change to %s: %s", p, e)
                return

    async def _dispatch(self, handle: WatchHandle, file_path: Path) -> None:
        async with handle.lock:
            if not handle.active:
                return
            if not handle.accepts(file_path):
                logger.debug("Ignoring change to %s", file_path)
                return
            try:
                await self._index(file_path, handle.options)
            except Exception as e:
                logger.error("Failed to index changed file %s: %s", file_path, e)

    def stop(self, path: Path) -> bool:
        """Stop watching ``path``. In-flight indexing is allowed to finish."""
        with self._lock:
            handle = self._handles.pop(path, None)
        if handle is None:
            return False
        handle.active = False
        handle.handler.cancel()
        if handle.observer is not None:
            handle.observer.stop()
            handle.observer.join(timeout=5)
        logger.info("Stopped watching %s", path)
        return True

    def stop_all(self) -> None:
        with self._lock:
            paths = list(self._handles)
        for path in paths:
            self.stop(path)

    def is_watching(self, path: Path) -> bool:
        with self._lock:
            return path in self._handles

    @property
    def paths(self) -> list[Path]:
        with self._lock:
            return list(self._handles)
