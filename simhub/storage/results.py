"""On-disk layout for job inputs, result artifact sets and download archives."""

import logging
import os
import shutil
import time
import zipfile
from typing import Iterable, Set

from simhub.core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class ResultStore:
    """Owns ``<base>/inputs``, ``<base>/results`` and ``<base>/archives``.

    Result paths handed out to records are relative to the base dir
    (``results/<job_id>``) so they stay valid if the volume is remounted.
    """

    def __init__(self, base_dir: str, ttl_hours: int = 24):
        self._base_dir = os.path.abspath(base_dir)
        for sub in ("inputs", "results", "archives"):
            os.makedirs(os.path.join(self._base_dir, sub), exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def get_input_dir(self, job_id: str) -> str:
        """Get or create the directory holding a job's uploaded input."""
        input_dir = os.path.join(self._base_dir, "inputs", job_id)
        os.makedirs(input_dir, exist_ok=True)
        return input_dir

    def input_path_for(self, job_id: str, filename: str) -> str:
        return f"inputs/{job_id}/{filename}"

    def result_path_for(self, job_id: str) -> str:
        return f"results/{job_id}"

    def get_workdir(self, job_id: str) -> str:
        return self.resolve(self.result_path_for(job_id))

    def resolve(self, result_path: str) -> str:
        """Absolute path of a result path; rejects paths outside the base dir."""
        full = os.path.normpath(os.path.join(self._base_dir, result_path))
        if os.path.commonpath([full, self._base_dir]) != self._base_dir or full == self._base_dir:
            raise ValidationError(f"result path '{result_path}' is outside the result store")
        return full

    def discard_input(self, job_id: str) -> None:
        shutil.rmtree(os.path.join(self._base_dir, "inputs", job_id), ignore_errors=True)

    def build_archive(self, job_id: str, result_path: str) -> str:
        """Zip a result artifact set. Returns the archive path."""
        source = self.resolve(result_path)
        if not os.path.isdir(source):
            raise NotFoundError(f"results for simulation '{job_id}' not found")

        archive_path = os.path.join(self._base_dir, "archives", f"results-{job_id}.zip")
        tmp_path = f"{archive_path}.tmp"
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for root, _dirs, files in os.walk(source):
                for name in files:
                    path = os.path.join(root, name)
                    zf.write(path, os.path.relpath(path, source))
        os.replace(tmp_path, archive_path)
        return archive_path

    def cleanup_expired(self, referenced_paths: Iterable[str], live_job_ids: Iterable[str]) -> int:
        """Remove unreferenced entries older than the TTL. Returns count removed."""
        keep_results: Set[str] = set()
        for path in referenced_paths:
            if path:
                keep_results.add(os.path.normpath(os.path.join(self._base_dir, path)))
        live = set(live_job_ids)

        now = time.time()
        removed = 0
        for sub in ("results", "inputs", "archives"):
            root = os.path.join(self._base_dir, sub)
            for entry in os.listdir(root):
                path = os.path.join(root, entry)
                if now - os.path.getmtime(path) <= self._ttl_seconds:
                    continue
                if sub == "results" and path in keep_results:
                    continue
                if sub == "inputs" and entry in live:
                    continue
                if os.path.isdir(path):
                    shutil.rmtree(path, ignore_errors=True)
                else:
                    os.remove(path)
                removed += 1
        if removed:
            logger.info("Result cleanup: removed %d expired entr%s", removed, "y" if removed == 1 else "ies")
        return removed
