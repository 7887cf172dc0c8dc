"""
Rule file watcher.

Polls the modification time and size of the ACL files and calls
``Authorizer.reload()`` when either changes. A failed reload keeps the
previous rules active, so a half-written file never locks callers out;
the next change triggers another attempt.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from libs.platform.authorization.authorizer import Authorizer

logger = logging.getLogger(__name__)

_Stamp = tuple[int, int] | None


def _stamp(path: Path) -> _Stamp:
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return (stat.st_mtime_ns, stat.st_size)


class RuleSetWatcher:
    """
    Background reload of an Authorizer's rule files.

    Args:
        authorizer: Authorizer to reload; must have been built from files.
        interval: Seconds between polls.
    """

    def __init__(self, authorizer: Authorizer, interval: float = 5.0) -> None:
        if authorizer.resource_acl_path is None or authorizer.permission_acl_path is None:
            raise ValueError("RuleSetWatcher requires an Authorizer built from rule files")
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        self.authorizer = authorizer
        self.interval = interval
        self._paths = (Path(authorizer.resource_acl_path), Path(authorizer.permission_acl_path))
        self._stamps = self._current_stamps()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _current_stamps(self) -> tuple[_Stamp, ...]:
        return tuple(_stamp(path) for path in self._paths)

    def check_once(self) -> bool:
        """
        Reload if any rule file changed since the last check.

        Returns:
            True if a reload ran and succeeded.
        """
        stamps = self._current_stamps()
        if stamps == self._stamps:
            return False
        self._stamps = stamps
        logger.info(
            "Rule file change detected",
            extra={"files": [str(p) for p in self._paths]},
        )
        return self.authorizer.reload()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._poll_loop, name="rule-set-watcher", daemon=True
        )
        self._thread.start()
        logger.info("Started rule watcher", extra={"interval": self.interval})

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Stopped rule watcher")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _poll_loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.check_once()
            except RuntimeError as e:
                logger.warning("Rule watcher check failed", extra={"error": str(e)})
