from __future__ import annotations

import asyncio
import signal
from collections.abc import Iterable
from enum import Enum
from typing import Protocol

from ..logging_conf import get_logger

__all__ = [
    "ShutdownState",
    "DrainableServer",
    "ShutdownCoordinator",
]

logger = get_logger("shutdown")


class ShutdownState(str, Enum):
    running = "running"
    draining = "draining"
    terminated = "terminated"


class DrainableServer(Protocol):
    """The slice of uvicorn.Server the coordinator drives."""

    should_exit: bool
    force_exit: bool

    async def serve(self) -> None: ...


class ShutdownCoordinator:
    """Own the running -> draining -> terminated lifecycle of one server.

    The first interrupt asks the server to stop accepting connections and
    starts a drain timer. The server finishing ends the drain cleanly; the
    timer firing, or a second interrupt, sets `force_exit` so the server
    stops waiting on whatever connections remain.
    """

    def __init__(
        self,
        server: DrainableServer,
        timeout: float,
        signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
    ) -> None:
        if timeout <= 0:
            raise ValueError("shutdown timeout must be positive")
        self.server = server
        self.timeout = timeout
        self.signals = tuple(signals)
        self.state = ShutdownState.running
        self.forced = False
        self._timer: asyncio.TimerHandle | None = None
        self._terminated = asyncio.Event()

    # ------------------------
    # Transitions
    # ------------------------

    def request_shutdown(self, sig: int | None = None) -> None:
        """Handle an interrupt: start draining, or force exit if already draining."""
        if self.state is ShutdownState.running:
            self.state = ShutdownState.draining
            logger.info(
                "shutdown.draining",
                extra={"event": "shutdown_draining", "signal": _signal_name(sig), "timeout_s": self.timeout},
            )
            logger.info("Exiting nicely. Interrupt again to force.")
            self.server.should_exit = True
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.timeout, self._force, "timeout")
        elif self.state is ShutdownState.draining:
            self._force("signal")

    def _force(self, reason: str) -> None:
        if self.state is not ShutdownState.draining or self.forced:
            return
        self.forced = True
        logger.warning("shutdown.forced", extra={"event": "shutdown_forced", "reason": reason})
        self.server.force_exit = True

    # ------------------------
    # Lifecycle
    # ------------------------

    async def run(self) -> None:
        """Serve until a shutdown completes, then mark the state terminated."""
        loop = asyncio.get_running_loop()
        installed = self._install_signal_handlers(loop)
        try:
            await self.server.serve()
        except Exception:
            if self.state is ShutdownState.running:
                raise
            # The drain is best effort; log and let the process exit.
            logger.exception("shutdown.error", extra={"event": "shutdown_error"})
        finally:
            if self._timer is not None:
                self._timer.cancel()
            for sig in installed:
                loop.remove_signal_handler(sig)
            self.state = ShutdownState.terminated
            self._terminated.set()
            logger.info(
                "shutdown.terminated",
                extra={"event": "shutdown_terminated", "forced": self.forced},
            )

    async def wait_terminated(self) -> None:
        await self._terminated.wait()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[signal.Signals]:
        installed: list[signal.Signals] = []
        for sig in self.signals:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not the main thread, or a platform without loop signal support.
                logger.warning(
                    "shutdown.signal_unavailable",
                    extra={"event": "shutdown_signal_unavailable", "signal": _signal_name(sig)},
                )
                continue
            installed.append(sig)
        return installed


def _signal_name(sig: int | None) -> str | None:
    if sig is None:
        return None
    try:
        return signal.Signals(sig).name
    except ValueError:
        return str(sig)
