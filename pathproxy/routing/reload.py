import asyncio
import contextlib
import logging
import os
import sys
from typing import Callable, Optional

from pathproxy.errors import ConfigLoadError
from pathproxy.routing.config_loader import load_routing_table
from pathproxy.routing.table import RoutingTable, RoutingTableHolder
from pathproxy.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

RELOAD_MODES = ("swap", "restart", "off")


def restart_process() -> None:
    """Replace the running process with a fresh one started with the same arguments."""
    argv = list(getattr(sys, "orig_argv", None) or [sys.executable, *sys.argv])
    logger.info(f"[Config] Restarting: {' '.join(argv)}")
    sys.stdout.flush()
    sys.stderr.flush()
    os.execv(sys.executable, argv)


class ConfigWatcher:
    """
    Polls the config file's modification time and reacts to changes.

    In "swap" mode a new RoutingTable is loaded and published in-process; a
    broken file leaves the previous generation active. In "restart" mode the
    process re-executes itself so it starts over with the new file.
    """

    def __init__(
        self,
        path: str,
        holder: RoutingTableHolder,
        mode: str = "swap",
        interval: float = 2.0,
        loader: Callable[[str], RoutingTable] = load_routing_table,
    ):
        if mode not in RELOAD_MODES:
            raise ValueError(f"Unknown config reload mode: {mode}")
        self.path = path
        self.holder = holder
        self.mode = mode
        self.interval = interval
        self.loader = loader
        self._task: Optional[asyncio.Task] = None
        self._last_mtime: Optional[float] = self._current_mtime()

    def _current_mtime(self) -> Optional[float]:
        try:
            return os.stat(self.path).st_mtime
        except OSError:
            return None

    def start(self) -> None:
        if self.mode == "off":
            logger.info("[Config] Reload watcher disabled")
            return
        self._task = asyncio.create_task(self._watch())
        logger.info(
            f"[Config] Watching {self.path} every {self.interval}s (mode: {self.mode})"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.check_for_change()
            except Exception as e:
                # The task must outlive a bad poll, the next change is retried
                log_exception_with_details(
                    logger,
                    f"[Config] Unexpected error while reloading {self.path}:",
                    e,
                )

    def check_for_change(self) -> bool:
        """Run one poll. Returns True when a change was detected."""
        mtime = self._current_mtime()
        # A missing file is ignored until it shows up again
        if mtime is None or mtime == self._last_mtime:
            return False
        self._last_mtime = mtime
        logger.info(f"[Config] Change detected in {self.path}")
        if self.mode == "restart":
            restart_process()
        else:
            self.reload()
        return True

    def reload(self) -> bool:
        try:
            table = self.loader(self.path)
        except ConfigLoadError as e:
            log_exception_with_details(
                logger,
                f"[Config] Reload failed, keeping generation {self.holder.get().generation}:",
                e,
            )
            return False
        published = self.holder.replace(table)
        logger.info(f"[Config] Routing table generation {published.generation} active")
        return True
