"""Operator settings read from the environment."""

import os
from functools import lru_cache

from pydantic import BaseModel, Field


def _env_bool(key, default):
    return os.getenv(key, default).lower() == "true"


class OperatorSettings(BaseModel):
    """Runtime knobs for the operator and the reconcile core."""

    log_level: str = Field(default="INFO")
    worker_limit: int = Field(default=5)
    posting_enabled: bool = Field(default=False)
    server_timeout: int = Field(default=60)
    manage_crds: bool = Field(default=True)
    generate_crd_files: bool = Field(default=False)

    mongo_image: str = Field(default="mongo:4.4")
    exporter_image: str = Field(default="percona/mongodb_exporter:0.30")

    call_timeout: float = Field(default=30, description="Seconds allowed per API or database call")
    sync_wait: float = Field(default=10, description="Seconds slept around shell bootstrap")
    requeue_error: float = Field(default=5)
    requeue_success: float = Field(default=60)
    pod_poll_interval: float = Field(default=10)
    pod_poll_timeout: float = Field(default=100)
    stepdown_wait: float = Field(default=3)

    @classmethod
    def from_env(cls):
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            worker_limit=int(os.getenv("WORKER_LIMIT", "5")),
            posting_enabled=_env_bool("POSTING_ENABLED", "false"),
            server_timeout=int(os.getenv("SERVER_TIMEOUT", "60")),
            manage_crds=_env_bool("MANAGE_CRDS", "true"),
            generate_crd_files=_env_bool("GENERATE_CRD_FILES", "false"),
            mongo_image=os.getenv("MONGO_IMAGE", "mongo:4.4"),
            exporter_image=os.getenv("EXPORTER_IMAGE", "percona/mongodb_exporter:0.30"),
            call_timeout=float(os.getenv("KMONGO_CALL_TIMEOUT", "30")),
            sync_wait=float(os.getenv("KMONGO_SYNC_WAIT", "10")),
            requeue_error=float(os.getenv("KMONGO_REQUEUE_ERROR", "5")),
            requeue_success=float(os.getenv("KMONGO_REQUEUE_SUCCESS", "60")),
            pod_poll_interval=float(os.getenv("KMONGO_POD_POLL_INTERVAL", "10")),
            pod_poll_timeout=float(os.getenv("KMONGO_POD_POLL_TIMEOUT", "100")),
            stepdown_wait=float(os.getenv("KMONGO_STEPDOWN_WAIT", "3")),
        )


@lru_cache(maxsize=1)
def get_settings():
    """Settings for this process, read once."""
    return OperatorSettings.from_env()
