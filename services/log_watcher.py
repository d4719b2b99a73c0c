"""Poll the CLI tool's session directory and import sessions as they appear."""

import asyncio
import logging
from typing import List, Optional, Set

from starlette.concurrency import run_in_threadpool

from services.session_manager import SessionManager

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0


class CliLogWatcher:
    """Imports session directories created after the watcher started.

    Directories already present on the first pass are left to
    `SessionManager.sync_cli_sessions`. A new directory is imported on the
    pass after the one that first saw it, once the tool has had a poll
    interval to write its log file. Hidden directories are ignored.
    """

    def __init__(self, sessions: SessionManager, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.sessions = sessions
        self.poll_interval = max(0.01, poll_interval)
        self._known: Optional[Set[str]] = None
        self._pending: Set[str] = set()
        self._task: Optional[asyncio.Task] = None

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _listing(self) -> Optional[Set[str]]:
        logs = self.sessions.cli_logs
        if logs is None:
            return set()
        try:
            return {name for name in logs.session_ids() if not name.startswith(".")}
        except OSError as e:
            logger.warning("Failed to list CLI sessions in %s: %s", logs.sessions_dir, e)
            return None

    def poll(self) -> List[str]:
        """One pass over the directory; returns the ids imported by it."""
        current = self._listing()
        if current is None:
            return []
        if self._known is None:
            self._known = current
            return []

        ready = sorted(self._pending & current)
        self._pending = current - self._known
        self._known |= current
        for session_id in sorted(self._pending):
            logger.info("New CLI session detected: %s", session_id)

        imported = []
        for session_id in ready:
            if self.sessions.get_session(session_id) is not None:
                continue
            result = self.sessions.import_cli_session(session_id)
            if result.success:
                logger.info("Loaded new CLI session %s", session_id)
                imported.append(session_id)
            else:
                logger.warning("Failed to load new CLI session %s: %s", session_id, [e.message for e in result.errors])
        return imported

    def start(self) -> None:
        if self.is_running():
            logger.warning("CLI session watcher already running")
            return
        self._task = asyncio.ensure_future(self._run())
        logger.info("Watching %s for new CLI sessions (interval %.1fs)",
                    self.sessions.cli_logs.sessions_dir if self.sessions.cli_logs else None, self.poll_interval)

    async def _run(self) -> None:
        while True:
            try:
                await run_in_threadpool(self.poll)
            except Exception:
                logger.exception("CLI session watcher pass failed")
            await asyncio.sleep(self.poll_interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped watching for CLI sessions")
