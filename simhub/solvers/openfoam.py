"""OpenFOAM adapter for CFD jobs.

Inputs are either a case from the case library or an uploaded ``.tar.gz``
case archive. Archives wrapped in a single top-level directory are unwrapped
so the case root lands directly in the work dir.
"""

import os
import tarfile
from typing import List

from simhub.config import settings
from simhub.core.errors import ValidationError
from simhub.jobs.models import JobRecord, JobType
from simhub.solvers.base import SolverAdapter, SolverSpec

REQUIRED_CASE_FILES = (
    "system/controlDict",
    "system/fvSchemes",
    "system/fvSolution",
    "constant/transportProperties",
)
POLY_MESH_DIR = "constant/polyMesh"


class OpenFOAMSolver(SolverAdapter):

    def spec(self) -> SolverSpec:
        return SolverSpec(
            job_type=JobType.CFD.value,
            name="OpenFOAM",
            engine="openfoam",
            upload_suffix=".tar.gz",
            max_upload_bytes=settings.max_cfd_upload_mb * 1024 * 1024,
            description="Finite-volume CFD. Runs the case's Allrun script when "
                        "present, otherwise the configured application.",
        )

    def validate_upload(self, path: str, filename: str) -> None:
        self.check_filename(filename)
        limit = self.spec().max_upload_bytes
        size = os.path.getsize(path)
        if size > limit:
            raise ValidationError(f"archive too large: {size} bytes (max {limit // (1024 * 1024)}MB)")

        try:
            with tarfile.open(path, "r:gz") as tar:
                names = tar.getnames()
        except (tarfile.TarError, OSError, EOFError) as exc:
            raise ValidationError(f"invalid gzip archive: {exc}") from exc

        missing = [
            required for required in REQUIRED_CASE_FILES
            if not any(name.endswith(required) for name in names)
        ]
        if missing:
            raise ValidationError(f"missing required OpenFOAM files: {missing}")
        if not any(POLY_MESH_DIR in name for name in names):
            raise ValidationError(f"missing {POLY_MESH_DIR} directory")

    def stage(self, job: JobRecord, workdir: str, cases_dir: str) -> None:
        os.makedirs(workdir, exist_ok=True)
        if job.input.config_path:
            self.stage_case(job, workdir, cases_dir)
            return
        with tarfile.open(job.input.archive_path, "r:gz") as tar:
            members = _strip_top_level(tar.getmembers())
            tar.extractall(workdir, members=members, filter="data")

    def command(self, workdir: str) -> List[str]:
        if os.path.exists(os.path.join(workdir, "Allrun")):
            return ["bash", "Allrun"]
        return list(settings.openfoam_command)


def _strip_top_level(members):
    for member in members:
        if member.name.startswith("./"):
            member.name = member.name[2:]
    members = [m for m in members if m.name not in ("", ".")]

    tops = {m.name.split("/", 1)[0] for m in members}
    if len(tops) != 1:
        return members
    top = tops.pop()
    if not any(m.name.startswith(top + "/system/") for m in members):
        return members

    stripped = []
    for member in members:
        if member.name == top:
            continue
        member.name = member.name[len(top) + 1:]
        stripped.append(member)
    return stripped
