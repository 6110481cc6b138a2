from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_DATA_DIR = "data"
DEFAULT_ADMIN_ROLE = "ADMIN"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class EngineSettings:
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    admin_role: str = DEFAULT_ADMIN_ROLE
    # Report forbidden reservations/resources as not found instead of permission denied.
    conceal_forbidden: bool = False
    # Idempotent reads are retried at most once on storage errors.
    read_retries: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "data_dir", Path(self.data_dir))
        if not self.admin_role or not self.admin_role.strip():
            raise ValueError("admin_role must not be empty")
        object.__setattr__(self, "read_retries", max(0, min(1, int(self.read_retries))))

    @staticmethod
    def from_env(environ: dict[str, str] | None = None) -> "EngineSettings":
        env = os.environ if environ is None else environ
        return EngineSettings(
            data_dir=Path(env.get("RESERVATION_DATA_DIR", DEFAULT_DATA_DIR)),
            admin_role=env.get("RESERVATION_ADMIN_ROLE", DEFAULT_ADMIN_ROLE),
            conceal_forbidden=env.get("RESERVATION_CONCEAL_FORBIDDEN", "").strip().lower() in _TRUE_VALUES,
            read_retries=int(env.get("RESERVATION_READ_RETRIES", "1")),
        )
