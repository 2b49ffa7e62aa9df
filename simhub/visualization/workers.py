"""Rendering worker backends for visualization sessions."""

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

from simhub.core.processes import ExecutionHandle, spawn_process
from simhub.visualization.models import SessionRecord


@dataclass
class RenderWorker:
    """A launched rendering worker and where it listens."""
    ref: str
    host: str
    port: int
    handle: ExecutionHandle


class RenderLauncher(ABC):

    @abstractmethod
    async def launch(self, session: SessionRecord, data_path: str, port: int) -> RenderWorker:
        """Start a worker serving ``data_path`` on ``port``."""
        ...

    @abstractmethod
    async def probe(self, worker: RenderWorker) -> bool:
        """True once the worker accepts streaming connections."""
        ...

    @abstractmethod
    def endpoint(self, worker: RenderWorker) -> str:
        """Connection descriptor clients use to stream frames from ``worker``."""
        ...


class LocalRenderLauncher(RenderLauncher):
    """Runs a ParaView Web style server as a local subprocess."""

    def __init__(self, command: List[str], host: str, stream_path: str, log_dir: str):
        self._command = command
        self._host = host
        self._stream_path = stream_path
        self._log_dir = log_dir

    async def launch(self, session: SessionRecord, data_path: str, port: int) -> RenderWorker:
        ref = f"viz-{session.id[:8]}"
        argv = [arg.format(port=port, data=data_path) for arg in self._command]
        handle = await spawn_process(
            ref,
            argv,
            cwd=data_path,
            log_path=os.path.join(self._log_dir, f"{ref}.log"),
        )
        return RenderWorker(ref=ref, host=self._host, port=port, handle=handle)

    async def probe(self, worker: RenderWorker) -> bool:
        try:
            _reader, writer = await asyncio.wait_for(
                asyncio.open_connection(worker.host, worker.port), timeout=1.0
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        await writer.wait_closed()
        return True

    def endpoint(self, worker: RenderWorker) -> str:
        return f"ws://{worker.host}:{worker.port}{self._stream_path}"


class PortPool:
    """Hands out listening ports from ``base`` upward."""

    def __init__(self, base: int):
        self._base = base
        self._taken = set()

    def allocate(self) -> int:
        port = self._base
        while port in self._taken:
            port += 1
        self._taken.add(port)
        return port

    def release(self, port: int) -> None:
        self._taken.discard(port)

    def __len__(self) -> int:
        return len(self._taken)


def build_launcher(backend: str, command: List[str], host: str, stream_path: str, log_dir: str) -> RenderLauncher:
    if backend == "local":
        return LocalRenderLauncher(command, host, stream_path, log_dir)
    raise ValueError(f"Unknown render backend '{backend}'")
