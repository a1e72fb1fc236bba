"""Application configuration loaded from config.yaml + environment variables."""

from __future__ import annotations

import yaml
from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings

_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


def _load_yaml() -> dict:
    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            return yaml.safe_load(f) or {}
    return {}


_yaml = _load_yaml()


class QueueConfig(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/upload_queue.db"
    max_items: int = 100
    max_bytes: int = 500 * 1024 * 1024
    warning_threshold: float = 0.8
    max_concurrent_uploads: int = 3
    max_retry_attempts: int = 10
    base_retry_delay: float = 1.0
    max_retry_delay: float = 300.0
    poll_interval: float = 0.1
    storage_bucket: str = "job-media"
    signed_url_ttl: int = 60 * 60 * 24 * 365
    encrypt_at_rest: bool = False


class AnnotationConfig(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/annotations.db"
    max_objects: int = 500
    max_text_length: int = 500
    max_freehand_points: int = 10000
    max_data_size_bytes: int = 1048576
    max_canvas_dimension: int = 10000
    min_stroke_width: float = 1
    max_stroke_width: float = 50
    min_font_size: float = 8
    max_font_size: float = 144


class LockConfig(BaseSettings):
    ttl_seconds: int = 300
    heartbeat_interval: float = 60.0
    expiry_warning: float = 30.0


class RenderConfig(BaseSettings):
    max_attempts: int = 3
    batch_size: int = 5
    base_retry_delay: float = 60.0
    output_dir: str = "data/renders"


class RemoteConfig(BaseSettings):
    base_url: str = ""
    api_key: str = ""
    timeout: float = 30.0
    connectivity_url: str = ""
    connectivity_interval: float = 15.0


class Settings(BaseSettings):
    fernet_key: str = ""
    blob_dir: str = "data/blobs"
    # Actor used when no remote identity service is configured
    business_id: str = "local"
    user_id: str = "local-user"
    user_name: str = ""
    queue: QueueConfig = Field(default_factory=QueueConfig)
    annotation: AnnotationConfig = Field(default_factory=AnnotationConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    render: RenderConfig = Field(default_factory=RenderConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


def get_settings() -> Settings:
    """Build Settings by merging YAML defaults with env overrides."""
    y = _yaml
    # Only keys present in YAML are passed, so env vars still fill the rest
    top_level = {k: y[k] for k in ("blob_dir", "business_id", "user_id", "user_name") if k in y}
    return Settings(
        **top_level,
        queue=QueueConfig(**y.get("queue", {})),
        annotation=AnnotationConfig(**y.get("annotation", {})),
        lock=LockConfig(**y.get("lock", {})),
        render=RenderConfig(**y.get("render", {})),
        remote=RemoteConfig(**y.get("remote", {})),
    )
