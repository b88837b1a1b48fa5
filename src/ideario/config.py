"""Ideario configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_ALLOWED_MIME_TYPES: list[str] = [
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/csv",
]


@dataclass
class Config:
    """Ideario configuration."""

    data_path: Path = field(default_factory=lambda: Path.home() / ".ideario")
    log_level: str = "INFO"
    wal_mode: bool = True

    # Sessions
    jwt_secret: str = "change-me-in-production"
    session_ttl_minutes: int = 60

    # Attachments
    attachments_bucket: str = "anexos-ideias"
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_mime_types: list[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES)
    )
    upload_path_attempts: int = 3
    public_base_url: str | None = None

    # Avatars
    avatars_bucket: str = "avatars"
    max_avatar_bytes: int = 2 * 1024 * 1024

    @classmethod
    def load(cls, data_path: Path | None = None) -> Config:
        """Load config from YAML file, env vars, then defaults."""
        config = cls()

        # An explicit path wins over IDEARIO_HOME
        env_path = os.environ.get("IDEARIO_HOME")
        if data_path:
            config.data_path = data_path
        elif env_path:
            config.data_path = Path(env_path)

        env_log = os.environ.get("IDEARIO_LOG_LEVEL")
        if env_log:
            config.log_level = env_log

        env_secret = os.environ.get("IDEARIO_JWT_SECRET")
        if env_secret:
            config.jwt_secret = env_secret

        # Load YAML config if exists
        config_file = config.data_path / "config.yaml"
        if config_file.exists():
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}
            for key, value in data.items():
                if not hasattr(config, key) or key == "data_path":
                    continue
                current = getattr(config, key)
                if value is None or current is None:
                    setattr(config, key, value)
                elif isinstance(current, list):
                    setattr(config, key, [str(v) for v in value])
                else:
                    setattr(config, key, type(current)(value))

        return config

    @property
    def db_path(self) -> Path:
        return self.data_path / "ideario.db"

    @property
    def storage_path(self) -> Path:
        return self.data_path / "storage"

    def save(self) -> None:
        """Save current config to YAML."""
        self.data_path.mkdir(parents=True, exist_ok=True)
        config_file = self.data_path / "config.yaml"
        data = {
            "log_level": self.log_level,
            "wal_mode": self.wal_mode,
            "session_ttl_minutes": self.session_ttl_minutes,
            "attachments_bucket": self.attachments_bucket,
            "max_upload_bytes": self.max_upload_bytes,
            "allowed_mime_types": self.allowed_mime_types,
            "upload_path_attempts": self.upload_path_attempts,
            "public_base_url": self.public_base_url,
            "avatars_bucket": self.avatars_bucket,
            "max_avatar_bytes": self.max_avatar_bytes,
        }
        with open(config_file, "w") as f:
            yaml.dump(data, f, default_flow_style=False)
