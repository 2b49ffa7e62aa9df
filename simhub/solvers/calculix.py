"""CalculiX adapter for FEA jobs."""

import os
import shutil
from typing import List

from simhub.config import settings
from simhub.core.errors import ValidationError
from simhub.jobs.models import JobRecord, JobType
from simhub.solvers.base import SolverAdapter, SolverSpec

INPUT_FILENAME = "input.inp"
REQUIRED_KEYWORDS = ("*NODE", "*ELEMENT")
HEADER_BYTES = 1024


class CalculiXSolver(SolverAdapter):

    def spec(self) -> SolverSpec:
        return SolverSpec(
            job_type=JobType.FEA.value,
            name="CalculiX",
            engine="calculix",
            upload_suffix=".inp",
            max_upload_bytes=settings.max_fea_upload_mb * 1024 * 1024,
            description="Finite-element structural analysis of a single .inp deck.",
        )

    def validate_upload(self, path: str, filename: str) -> None:
        self.check_filename(filename)
        limit = self.spec().max_upload_bytes
        size = os.path.getsize(path)
        if size > limit:
            raise ValidationError(f"input file too large: {size} bytes (max {limit // (1024 * 1024)}MB)")

        with open(path, "rb") as fh:
            header = fh.read(HEADER_BYTES).decode("utf-8", errors="replace").upper()
        missing = [kw for kw in REQUIRED_KEYWORDS if kw not in header]
        if missing:
            raise ValidationError(f"invalid CalculiX .inp file: missing keywords {missing}")

    def stage(self, job: JobRecord, workdir: str, cases_dir: str) -> None:
        os.makedirs(workdir, exist_ok=True)
        if job.input.config_path:
            self.stage_case(job, workdir, cases_dir)
        else:
            shutil.copyfile(job.input.archive_path, os.path.join(workdir, INPUT_FILENAME))

    def command(self, workdir: str) -> List[str]:
        return list(settings.calculix_command)
