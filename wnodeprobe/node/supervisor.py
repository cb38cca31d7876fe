"""Lifecycle supervisor for a single node peer."""

from __future__ import annotations

import asyncio
from enum import Enum

from loguru import logger

from wnodeprobe.node.peer import Peer, PeerExit
from wnodeprobe.node.readiness import Probe, wait_until_ready
from wnodeprobe.node.signals import OneShot
from wnodeprobe.utils.exceptions import LifecycleError
from wnodeprobe.utils.retry import RetryPolicy


class NodeState(str, Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class NodeSupervisor:
    """
    Owns one peer from spawn to reaping inside a dedicated task.

    The caller talks to the lifecycle task only through one-shot signals:
    ``wait_ready()`` consumes the readiness outcome, ``request_shutdown()``
    fires the shutdown signal, and ``wait_terminated()`` consumes the
    completion signal. Completion fires exactly once per lifecycle, whether
    spawn, probing or termination succeeded or not; lifecycle failures are
    logged and collected in ``errors`` rather than raised from the task.
    """

    def __init__(self, peer: Peer, *, probe: Probe | None = None, readiness: RetryPolicy | None = None):
        self.peer = peer
        self.name = peer.name
        self.state = NodeState.NOT_STARTED
        self.errors: list[LifecycleError] = []
        self._probe = probe
        self._readiness = readiness or RetryPolicy()
        self._ready: OneShot[LifecycleError] = OneShot(f"{self.name}:ready")
        self._shutdown: OneShot[None] = OneShot(f"{self.name}:shutdown")
        self._done: OneShot[PeerExit] = OneShot(f"{self.name}:done")
        self._task: asyncio.Task[None] | None = None

    def launch(self) -> asyncio.Task[None]:
        if self._task is not None:
            raise LifecycleError(self.name, "lifecycle already launched", code="ALREADY_LAUNCHED")
        self._task = asyncio.create_task(self._run(), name=f"lifecycle:{self.name}")
        return self._task

    async def wait_ready(self) -> None:
        """Block until the node is ready; raise LifecycleError if it never became ready."""
        error = await self._ready.wait()
        if error is not None:
            raise error

    def request_shutdown(self) -> None:
        self._shutdown.fire()

    async def wait_terminated(self) -> PeerExit:
        outcome = await self._done.wait()
        assert outcome is not None
        return outcome

    def _set_state(self, state: NodeState) -> None:
        logger.debug("[{}] {} -> {}", self.name, self.state.value, state.value)
        self.state = state

    def _record(self, error: LifecycleError) -> LifecycleError:
        logger.warning("[{}] lifecycle error {}: {}", self.name, error.code, error.message)
        self.errors.append(error)
        return error

    async def _run(self) -> None:
        outcome = PeerExit(name=self.name, error="lifecycle aborted")
        shutdown_wait = asyncio.create_task(self._shutdown.wait(), name=f"shutdown:{self.name}")
        started = False
        try:
            started = await self._start()
            if started:
                await self._become_ready(shutdown_wait)
            await shutdown_wait
            outcome = await self._stop(started)
        except asyncio.CancelledError:
            if started and self.state != NodeState.TERMINATED:
                logger.warning("[{}] lifecycle cancelled; reaping peer", self.name)
                # The reap runs in its own task so a repeated cancel cannot orphan the child.
                reap = asyncio.ensure_future(self._stop(started))
                outcome = await asyncio.shield(reap)
            raise
        finally:
            if not shutdown_wait.done():
                shutdown_wait.cancel()
            if not self._ready.fired:
                self._ready.fire(LifecycleError(self.name, "lifecycle ended before ready", code="NOT_READY"))
            self._set_state(NodeState.TERMINATED)
            self._done.fire(outcome)

    async def _start(self) -> bool:
        self._set_state(NodeState.STARTING)
        try:
            await self.peer.start()
        except LifecycleError as exc:
            self._ready.fire(self._record(exc))
            return False
        except Exception as exc:
            wrapped = LifecycleError(self.name, f"start failed: {exc}", code="SPAWN_FAILED")
            self._ready.fire(self._record(wrapped))
            return False
        return True

    async def _become_ready(self, shutdown_wait: asyncio.Task[None]) -> None:
        if self._probe is None:
            self._set_state(NodeState.READY)
            self._ready.fire(None)
            return
        probe_task = asyncio.create_task(
            wait_until_ready(self._probe, self._readiness, name=self.name),
            name=f"probe:{self.name}",
        )
        done, _ = await asyncio.wait({probe_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
        if probe_task not in done:
            probe_task.cancel()
            await asyncio.wait({probe_task})
            self._ready.fire(LifecycleError(self.name, "shutdown requested before ready", code="NOT_READY"))
            return
        exc = probe_task.exception()
        if exc is None:
            self._set_state(NodeState.READY)
            self._ready.fire(None)
            return
        if not isinstance(exc, LifecycleError):
            exc = LifecycleError(self.name, f"readiness probe failed: {exc}", code="NOT_READY")
        self._ready.fire(self._record(exc))

    async def _stop(self, started: bool) -> PeerExit:
        self._set_state(NodeState.SHUTTING_DOWN)
        if not started:
            reason = self.errors[0].message if self.errors else "never started"
            return PeerExit(name=self.name, error=reason)
        try:
            await self.peer.terminate()
        except Exception as exc:
            self._record(exc if isinstance(exc, LifecycleError) else LifecycleError(self.name, f"terminate failed: {exc}", code="TERMINATE_FAILED"))
        try:
            return await self.peer.wait_exited()
        except Exception as exc:
            error = exc if isinstance(exc, LifecycleError) else LifecycleError(self.name, f"wait failed: {exc}", code="WAIT_FAILED")
            self._record(error)
            return PeerExit(name=self.name, error=error.message)
