"""Node peers: one lifecycle interface, subprocess and in-process implementations."""

from __future__ import annotations

import asyncio
import codecs
import os
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from wnodeprobe.utils.exceptions import LifecycleError, sanitize_error_message

STDERR_CHUNK = 4096
MAX_STDERR_LINE = 8192


@dataclass(slots=True)
class PeerExit:
    """Exit status collected when a peer is reaped."""

    name: str
    returncode: int | None = None
    stderr_tail: str = ""
    error: str | None = None

    @property
    def clean(self) -> bool:
        return self.error is None


@runtime_checkable
class Peer(Protocol):
    name: str

    async def start(self) -> None: ...
    async def terminate(self) -> None: ...
    async def wait_exited(self) -> PeerExit: ...


class SubprocessPeer:
    """Runs a node binary as a child process.

    ``env`` entries are layered onto a copy of the parent environment and given
    only to the child; the parent's os.environ is never touched. Values in
    ``secrets`` are redacted from stderr before it is logged or kept.
    """

    def __init__(
        self,
        name: str,
        command: list[str],
        *,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        secrets: list[str] | None = None,
        kill_timeout: float = 5.0,
        stderr_lines: int = 200,
    ):
        if not command:
            raise ValueError("command must not be empty")
        self.name = name
        self.command = [str(part) for part in command]
        self.cwd = str(cwd) if cwd else None
        self.kill_timeout = kill_timeout
        self._env_overrides = dict(env or {})
        self._secrets = [s for s in (secrets or []) if s]
        self._proc: asyncio.subprocess.Process | None = None
        self._stderr: deque[str] = deque(maxlen=stderr_lines)
        self._stderr_task: asyncio.Task[None] | None = None
        self._reaped = False

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr)

    def _child_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self._env_overrides)
        return env

    def _redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, "[REDACTED]")
        return text

    async def start(self) -> None:
        if self._proc is not None:
            raise LifecycleError(self.name, "already started", code="ALREADY_STARTED")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.cwd,
                env=self._child_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise LifecycleError(
                self.name,
                f"spawn failed for {self.command[0]!r}: {self._redact(str(exc))}",
                code="SPAWN_FAILED",
            ) from exc
        logger.info("[{}] spawned pid={} cmd={}", self.name, self._proc.pid, " ".join(self.command))
        self._stderr_task = asyncio.create_task(self._drain_stderr(), name=f"stderr:{self.name}")

    async def _drain_stderr(self) -> None:
        proc = self._proc
        if not proc or not proc.stderr:
            return
        # Chunked reads: a line longer than the StreamReader limit must not stop the drain.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        truncated = False
        while True:
            chunk = await proc.stderr.read(STDERR_CHUNK)
            if not chunk:
                break
            pending += decoder.decode(chunk)
            *lines, pending = pending.split("\n")
            for line in lines:
                if truncated:
                    truncated = False
                    continue
                self._keep_line(line)
            if len(pending) > MAX_STDERR_LINE:
                if not truncated:
                    self._keep_line(pending[:MAX_STDERR_LINE] + " [truncated]")
                    truncated = True
                pending = ""
        pending += decoder.decode(b"", final=True)
        if pending and not truncated:
            self._keep_line(pending)

    def _keep_line(self, raw: str) -> None:
        text = self._redact(raw.rstrip())
        if text:
            self._stderr.append(text)
            logger.debug("[{}] {}", self.name, sanitize_error_message(text))

    async def terminate(self) -> None:
        proc = self._proc
        if proc is None:
            raise LifecycleError(self.name, "terminate before start", code="NOT_STARTED")
        if self._reaped:
            raise LifecycleError(self.name, "process already reaped", code="ALREADY_REAPED")
        if proc.returncode is not None:
            logger.warning("[{}] pid={} already exited with {}", self.name, proc.pid, proc.returncode)
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            logger.warning("[{}] pid={} already gone at terminate", self.name, proc.pid)

    async def wait_exited(self) -> PeerExit:
        proc = self._proc
        if proc is None:
            raise LifecycleError(self.name, "wait before start", code="NOT_STARTED")
        if self._reaped:
            raise LifecycleError(self.name, "process already reaped", code="ALREADY_REAPED")
        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=self.kill_timeout)
        except asyncio.TimeoutError:
            logger.warning("[{}] pid={} ignored SIGTERM for {}s; killing", self.name, proc.pid, self.kill_timeout)
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            returncode = await proc.wait()
        self._reaped = True
        await self._finish_stderr()
        logger.info("[{}] pid={} exited with {}", self.name, proc.pid, returncode)
        return PeerExit(name=self.name, returncode=returncode, stderr_tail=self.stderr_tail)

    async def _finish_stderr(self) -> None:
        task = self._stderr_task
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=1.0)
        except asyncio.TimeoutError:
            # stderr may be held open by a grandchild
            task.cancel()
        except Exception as exc:
            logger.warning("[{}] stderr drain failed: {}", self.name, exc)


class InProcessPeer:
    """Runs an embedded node entry point as a task in the current event loop."""

    def __init__(self, name: str, factory: Callable[[], Awaitable[Any]]):
        self.name = name
        self._factory = factory
        self._task: asyncio.Future[Any] | None = None
        self._reaped = False

    async def start(self) -> None:
        if self._task is not None:
            raise LifecycleError(self.name, "already started", code="ALREADY_STARTED")
        try:
            self._task = asyncio.ensure_future(self._factory())
        except Exception as exc:
            raise LifecycleError(self.name, f"entry point failed: {exc}", code="SPAWN_FAILED") from exc
        # Let the entry point run up to its first suspension so immediate failures surface here.
        await asyncio.sleep(0)
        if self._task.done() and not self._task.cancelled() and self._task.exception() is not None:
            raise LifecycleError(self.name, f"entry point failed: {self._task.exception()}", code="SPAWN_FAILED")
        logger.info("[{}] started in-process", self.name)

    async def terminate(self) -> None:
        if self._task is None:
            raise LifecycleError(self.name, "terminate before start", code="NOT_STARTED")
        if self._reaped:
            raise LifecycleError(self.name, "peer already reaped", code="ALREADY_REAPED")
        if self._task.done():
            logger.warning("[{}] in-process peer already finished", self.name)
            return
        self._task.cancel()

    async def wait_exited(self) -> PeerExit:
        task = self._task
        if task is None:
            raise LifecycleError(self.name, "wait before start", code="NOT_STARTED")
        if self._reaped:
            raise LifecycleError(self.name, "peer already reaped", code="ALREADY_REAPED")
        await asyncio.wait({task})
        self._reaped = True
        if task.cancelled():
            logger.info("[{}] in-process peer stopped", self.name)
            return PeerExit(name=self.name, returncode=None)
        exc = task.exception()
        if exc is not None:
            logger.warning("[{}] in-process peer failed: {}", self.name, exc)
            return PeerExit(name=self.name, returncode=1, error=str(exc))
        return PeerExit(name=self.name, returncode=0)
