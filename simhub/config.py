"""Application configuration via environment variables."""

import os
import tempfile
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Service
    port: int = 8082
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000", "*"]

    # Storage
    data_dir: str = os.path.join(tempfile.gettempdir(), "simhub")
    case_library_dir: Optional[str] = None  # defaults to <data_dir>/cases
    state_dir: Optional[str] = None  # JSON snapshots of the record stores
    result_ttl_hours: int = 24

    # Solver execution
    solver_backend: str = "local"
    solver_slots: int = 2
    max_queue_depth: int = 32  # 0 disables the cap
    job_timeout_seconds: float = 1800
    cancel_grace_seconds: float = 10
    openfoam_command: List[str] = ["icoFoam"]
    calculix_command: List[str] = ["ccx", "-i", "input"]
    max_cfd_upload_mb: int = 100
    max_fea_upload_mb: int = 50

    # Rendering workers
    render_backend: str = "local"
    render_slots: int = 2
    session_timeout_seconds: float = 300
    render_command: List[str] = [
        "pvpython", "-m", "light_viz.server", "--port", "{port}", "--data", "{data}",
    ]
    render_host: str = "127.0.0.1"
    render_port_base: int = 9000
    stream_path: str = "/ws"
    ready_probe_interval_seconds: float = 1.0

    # Background reconciliation
    reconcile_interval_seconds: float = 60

    # Supabase auth (only when auth_enabled)
    auth_enabled: bool = False
    supabase_url: str = ""
    supabase_anon_key: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def cases_dir(self) -> str:
        return self.case_library_dir or os.path.join(self.data_dir, "cases")


settings = Settings()
