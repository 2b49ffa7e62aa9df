"""Base solver adapter interface and data types for the solver registry."""

import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from simhub.core.errors import ValidationError
from simhub.jobs.models import JobRecord


def resolve_case_dir(cases_dir: str, config_path: str) -> str:
    """Map a configPath onto a directory inside the case library."""
    normalized = os.path.normpath(config_path.strip()) if config_path else ""
    if (
        not normalized
        or normalized == "."
        or os.path.isabs(normalized)
        or normalized.split(os.sep)[0] == ".."
    ):
        raise ValidationError(f"invalid configPath '{config_path}'")
    path = os.path.join(cases_dir, normalized)
    if not os.path.isdir(path):
        raise ValidationError(f"unknown case '{config_path}' in case library")
    return path


@dataclass
class SolverSpec:
    """Metadata describing a registered solver adapter."""
    job_type: str
    name: str
    engine: str
    upload_suffix: str
    max_upload_bytes: int
    description: str = ""
    version: str = "1.0.0"
    extra: Dict[str, Any] = field(default_factory=dict)


class SolverAdapter(ABC):
    """Abstract base class for every solver the dispatcher can run.

    To register a new solver:
    1. Create a new .py file in simhub/solvers/
    2. Subclass SolverAdapter
    3. Implement spec(), validate_upload(), stage(), command()
    4. The registry auto-discovers it at startup
    """

    @abstractmethod
    def spec(self) -> SolverSpec:
        """Return solver metadata."""
        ...

    @abstractmethod
    def validate_upload(self, path: str, filename: str) -> None:
        """Check a staged upload. Raises ValidationError when it is unusable."""
        ...

    @abstractmethod
    def stage(self, job: JobRecord, workdir: str, cases_dir: str) -> None:
        """Lay out the job's input inside ``workdir``. Runs in a worker thread."""
        ...

    @abstractmethod
    def command(self, workdir: str) -> List[str]:
        """argv that runs the solver inside a staged ``workdir``."""
        ...

    def stage_case(self, job: JobRecord, workdir: str, cases_dir: str) -> None:
        """Copy a named case from the case library into ``workdir``."""
        source = resolve_case_dir(cases_dir, job.input.config_path or "")
        shutil.copytree(source, workdir, dirs_exist_ok=True)

    def check_filename(self, filename: str) -> None:
        spec = self.spec()
        if not filename.endswith(spec.upload_suffix):
            raise ValidationError(
                f"{spec.job_type.upper()} simulation requires {spec.upload_suffix} input, got: {filename}"
            )
