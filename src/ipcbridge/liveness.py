"""Liveness monitor: evicts sessions that stop answering pings.

Each sweep either evicts a session whose ``is_alive`` flag is still False from
the previous sweep, or clears the flag and pings it. A pong sets the flag
again, so a session silent for two sweeps is reclaimed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ipcbridge.sessions import Session, SessionTable

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Periodic ping/pong sweep over a session table."""

    def __init__(
        self,
        sessions: SessionTable,
        interval: float = 30.0,
        close_timeout: float | None = None,
    ) -> None:
        if interval <= 0:
            msg = "Sweep interval must be positive"
            raise ValueError(msg)
        self.sessions = sessions
        self.interval = interval
        self.close_timeout = close_timeout if close_timeout is not None else interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> list[str]:
        """Run one sweep.

        Returns:
            Client ids evicted by this sweep
        """
        dead: list[Session] = []
        probed: list[Session] = []
        for session in self.sessions:
            if session.is_alive:
                session.is_alive = False
                probed.append(session)
            else:
                logger.info("Evicting unresponsive client %s", session.client_id)
                self.sessions.remove(session.client_id)
                dead.append(session)

        await asyncio.gather(
            *(self._terminate(session) for session in dead),
            *(session.probe() for session in probed),
        )
        return [session.client_id for session in dead]

    async def _terminate(self, session: Session) -> None:
        # A half-open peer never answers the close handshake
        try:
            await asyncio.wait_for(session.terminate(), self.close_timeout)
        except TimeoutError:
            logger.debug("Close of %s timed out", session.client_id)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Liveness sweep failed")

    def start(self) -> None:
        """Start sweeping on a background task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
