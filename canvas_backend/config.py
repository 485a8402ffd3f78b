"""
Runtime configuration read from THREAT_CANVAS_* environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from canvas_core.models import ModelKind

# External identity sentinel meaning "start a new document"
NEW_IDENTITY = "new"

DEFAULT_MODEL_NAME = "Untitled Model"
DEFAULT_MODEL_KIND = ModelKind.INFRASTRUCTURE

DEFAULT_DATA_DIR = Path.home() / ".threat-canvas" / "models"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173"


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass
class Settings:
    """Settings for one engine process."""
    data_dir: Path = DEFAULT_DATA_DIR
    store_url: Optional[str] = None
    assistant_url: Optional[str] = None
    assistant_model: str = "gpt-4o-mini"
    owner_id: str = "local"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    commit_delay: float = 0.5
    toast_interval: float = 2.5
    stencil_file: Optional[Path] = None
    cors_origins: list[str] = field(
        default_factory=lambda: DEFAULT_CORS_ORIGINS.split(",")
    )

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment, falling back to defaults."""
        env = os.environ
        log_file = env.get("THREAT_CANVAS_LOG_FILE")
        stencil_file = env.get("THREAT_CANVAS_STENCIL_FILE")
        origins = env.get("THREAT_CANVAS_CORS_ORIGINS", DEFAULT_CORS_ORIGINS)

        return cls(
            data_dir=Path(env.get("THREAT_CANVAS_DATA_DIR", str(DEFAULT_DATA_DIR))),
            store_url=env.get("THREAT_CANVAS_STORE_URL") or None,
            assistant_url=env.get("THREAT_CANVAS_ASSISTANT_URL") or None,
            assistant_model=env.get("THREAT_CANVAS_ASSISTANT_MODEL", "gpt-4o-mini"),
            owner_id=env.get("THREAT_CANVAS_OWNER_ID", "local"),
            host=env.get("THREAT_CANVAS_HOST", DEFAULT_HOST),
            port=int(env.get("THREAT_CANVAS_PORT", str(DEFAULT_PORT))),
            log_level=env.get("THREAT_CANVAS_LOG_LEVEL", "INFO").upper(),
            log_file=Path(log_file) if log_file else None,
            commit_delay=_env_float("THREAT_CANVAS_COMMIT_DELAY", 0.5),
            toast_interval=_env_float("THREAT_CANVAS_TOAST_INTERVAL", 2.5),
            stencil_file=Path(stencil_file) if stencil_file else None,
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
