"""
Kubeconfig file watching.

The parent directory of each kubeconfig file is watched, filtered to the files
themselves, so editors and credential helpers that replace the file atomically
(write + rename) are still picked up.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from watchfiles import Change, awatch

logger = logging.getLogger(__name__)

OnChange = Callable[[], Awaitable[None]]


class KubeConfigWatch:
    """Running watch task; ``close()`` stops it exactly once."""

    def __init__(self, task: asyncio.Task, stop_event: asyncio.Event) -> None:
        self._task = task
        self._stop_event = stop_event
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()
        if self._task.done():
            return
        # Called from inside on_change (a reload): let the callback finish,
        # the loop exits on its own once it sees the stop event.
        if _current_task() is not self._task:
            self._task.cancel()


def _current_task() -> asyncio.Task | None:
    """The running task, or None when called outside an event loop."""
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def watch_kubeconfig(files: Iterable[Path], on_change: OnChange) -> KubeConfigWatch | None:
    """Start watching ``files``; returns None when watching is unavailable."""
    targets = {os.path.abspath(f) for f in files if Path(f).exists()}
    if not targets:
        logger.info("No kubeconfig files found for watching")
        return None

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running event loop; kubeconfig changes will not be picked up")
        return None

    stop_event = asyncio.Event()
    task = loop.create_task(_watch(targets, on_change, stop_event), name="kubeconfig-watch")
    for target in sorted(targets):
        logger.debug("Watching kubeconfig file: %s", target)
    return KubeConfigWatch(task, stop_event)


async def _watch(targets: set[str], on_change: OnChange, stop_event: asyncio.Event) -> None:
    directories = sorted({os.path.dirname(t) for t in targets})

    def _is_target(_change: Change, path: str) -> bool:
        return os.path.abspath(path) in targets

    try:
        async for changes in awatch(*directories, watch_filter=_is_target, stop_event=stop_event):
            for change, path in changes:
                logger.debug("Kubeconfig file changed: %s (event: %s)", path, change.name)
            try:
                await on_change()
            except Exception:  # noqa: BLE001
                logger.exception("Failed to handle kubeconfig change")
            if stop_event.is_set():
                break
    except OSError:
        # Platform/permission failure: keep serving with the current handle.
        logger.exception("Kubeconfig watcher failed; automatic reload disabled")
    logger.debug("Kubeconfig watcher stopped")
