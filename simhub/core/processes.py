"""Handles on external work (solver runs, render workers)."""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections import deque
from typing import List, Optional

logger = logging.getLogger(__name__)


class ExecutionHandle(ABC):
    """Transient reference to one piece of external work."""

    ref: str

    @abstractmethod
    async def wait(self) -> int:
        """Block until the work exits. Returns its exit code."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        ...

    @abstractmethod
    async def terminate(self, grace_seconds: float) -> bool:
        """Ask the work to stop, escalating after ``grace_seconds``.

        Returns True once it has stopped, False if it is still alive.
        """
        ...

    def log_tail(self, lines: int = 20) -> str:
        return ""


class ProcessHandle(ExecutionHandle):
    """A local subprocess with stdout/stderr captured to a log file."""

    def __init__(self, ref: str, process: asyncio.subprocess.Process, log_path: Optional[str]):
        self.ref = ref
        self._process = process
        self._log_path = log_path

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    async def wait(self) -> int:
        return await self._process.wait()

    def is_alive(self) -> bool:
        return self._process.returncode is None

    async def terminate(self, grace_seconds: float) -> bool:
        if not self.is_alive():
            return True
        logger.info("Terminating %s (pid %s)", self.ref, self._process.pid)
        try:
            self._process.terminate()
            await asyncio.wait_for(self._process.wait(), timeout=grace_seconds)
            return True
        except ProcessLookupError:
            return True
        except asyncio.TimeoutError:
            logger.warning("%s ignored SIGTERM for %.1fs, killing", self.ref, grace_seconds)
        try:
            self._process.kill()
            await asyncio.wait_for(self._process.wait(), timeout=grace_seconds)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.error("%s is still alive after SIGKILL", self.ref)
        return not self.is_alive()

    def log_tail(self, lines: int = 20) -> str:
        if not self._log_path or not os.path.exists(self._log_path):
            return ""
        with open(self._log_path, encoding="utf-8", errors="replace") as fh:
            return "".join(deque(fh, maxlen=lines)).strip()


async def spawn_process(ref: str, argv: List[str], cwd: str, log_path: str) -> ProcessHandle:
    """Start ``argv`` in ``cwd`` with output appended to ``log_path``."""
    os.makedirs(os.path.dirname(log_path), exist_ok=True)
    with open(log_path, "ab") as log_file:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=log_file,
            stderr=asyncio.subprocess.STDOUT,
        )
    logger.info("Started %s (pid %s): %s", ref, process.pid, " ".join(argv))
    return ProcessHandle(ref, process, log_path)
