from __future__ import annotations

import asyncio
import os
import signal
import sys
import time

import pytest

from fileserver.domain.shutdown import ShutdownCoordinator, ShutdownState


class FakeServer:
    """Mimics uvicorn.Server's exit flags with optional in-flight work."""

    def __init__(self, in_flight: float = 0.0) -> None:
        self.should_exit = False
        self.force_exit = False
        self.in_flight = in_flight
        self.started = asyncio.Event()
        self.stopped_accepting_at: float | None = None

    async def serve(self) -> None:
        self.started.set()
        while not self.should_exit:
            await asyncio.sleep(0.01)
        self.stopped_accepting_at = time.monotonic()
        # drain: wait for the pretend in-flight request unless forced
        deadline = time.monotonic() + self.in_flight
        while time.monotonic() < deadline and not self.force_exit:
            await asyncio.sleep(0.01)


async def _drive(coordinator: ShutdownCoordinator, trigger) -> float:
    task = asyncio.create_task(coordinator.run())
    await coordinator.server.started.wait()
    assert coordinator.state is ShutdownState.running
    start = time.monotonic()
    trigger()
    await asyncio.wait_for(task, timeout=5)
    return time.monotonic() - start


def test_interrupt_drains_and_terminates_before_timeout() -> None:
    async def scenario() -> None:
        server = FakeServer()
        coordinator = ShutdownCoordinator(server, timeout=2.0, signals=())
        elapsed = await _drive(coordinator, coordinator.request_shutdown)
        assert coordinator.state is ShutdownState.terminated
        assert server.should_exit is True
        assert coordinator.forced is False
        assert elapsed < 2.0

    asyncio.run(scenario())


def test_state_is_draining_while_the_server_winds_down() -> None:
    async def scenario() -> None:
        server = FakeServer(in_flight=0.2)
        coordinator = ShutdownCoordinator(server, timeout=2.0, signals=())
        task = asyncio.create_task(coordinator.run())
        await server.started.wait()
        coordinator.request_shutdown()
        assert coordinator.state is ShutdownState.draining
        await asyncio.sleep(0.05)
        assert coordinator.state is ShutdownState.draining
        await asyncio.wait_for(task, timeout=5)
        assert coordinator.state is ShutdownState.terminated

    asyncio.run(scenario())


def test_timer_forces_exit_when_requests_do_not_finish() -> None:
    async def scenario() -> None:
        server = FakeServer(in_flight=10.0)
        coordinator = ShutdownCoordinator(server, timeout=0.2, signals=())
        elapsed = await _drive(coordinator, coordinator.request_shutdown)
        assert coordinator.forced is True
        assert server.force_exit is True
        assert coordinator.state is ShutdownState.terminated
        assert 0.2 <= elapsed < 5

    asyncio.run(scenario())


def test_second_interrupt_forces_immediately() -> None:
    async def scenario() -> None:
        server = FakeServer(in_flight=10.0)
        coordinator = ShutdownCoordinator(server, timeout=30.0, signals=())

        def twice() -> None:
            coordinator.request_shutdown()
            coordinator.request_shutdown()

        elapsed = await _drive(coordinator, twice)
        assert coordinator.forced is True
        assert elapsed < 5

    asyncio.run(scenario())


def test_server_error_during_drain_is_logged_not_raised() -> None:
    class Failing(FakeServer):
        async def serve(self) -> None:
            await super().serve()
            raise RuntimeError("listener refused to close")

    async def scenario() -> None:
        coordinator = ShutdownCoordinator(Failing(), timeout=1.0, signals=())
        await _drive(coordinator, coordinator.request_shutdown)
        assert coordinator.state is ShutdownState.terminated

    asyncio.run(scenario())


def test_server_error_while_running_propagates() -> None:
    class Broken:
        should_exit = False
        force_exit = False

        async def serve(self) -> None:
            raise RuntimeError("bind failed")

    async def scenario() -> None:
        coordinator = ShutdownCoordinator(Broken(), timeout=1.0, signals=())
        with pytest.raises(RuntimeError):
            await coordinator.run()
        assert coordinator.state is ShutdownState.terminated

    asyncio.run(scenario())


def test_timeout_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ShutdownCoordinator(FakeServer(), timeout=0)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_real_sigint_starts_the_drain() -> None:
    async def scenario() -> None:
        server = FakeServer()
        coordinator = ShutdownCoordinator(server, timeout=2.0, signals=(signal.SIGINT,))
        elapsed = await _drive(coordinator, lambda: os.kill(os.getpid(), signal.SIGINT))
        assert coordinator.state is ShutdownState.terminated
        assert coordinator.forced is False
        assert elapsed < 2.0

    asyncio.run(scenario())
