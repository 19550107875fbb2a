"""
Environment configuration for the compression service.

``load_config()`` reads every setting from the environment and returns a plain
dict that ``create_app`` merges into ``app.config``. Tests pass overrides
instead of touching the environment.
"""

import os
from typing import Any, Dict

GIB = 1024 * 1024 * 1024


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name, "").strip().lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


def _allowed_origins():
    # Default HTTP CORS to '*' unless explicitly set
    raw = os.getenv("ALLOWED_ORIGINS", "").strip()
    if not raw or raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def load_config() -> Dict[str, Any]:
    """Build the service configuration from environment variables."""
    max_upload = _env_int("MAX_UPLOAD_SIZE", 10 * GIB)  # 10GB per upload

    return {
        "PORT": _env_int("PORT", 3001),
        "STORAGE_PATH": os.getenv("STORAGE_PATH", "/data"),
        "MAX_UPLOAD_SIZE": max_upload,
        # Werkzeug stops reading the body past this many bytes
        "MAX_CONTENT_LENGTH": max_upload + 1024 * 1024,
        "ALLOWED_ORIGINS": _allowed_origins(),
        # Encode pool
        "ENCODE_CONCURRENCY": _env_int("ENCODE_CONCURRENCY", 2),
        "ENCODE_QUEUE_LIMIT": _env_int("ENCODE_QUEUE_LIMIT", 32),
        "MAX_ENCODE_SECONDS": _env_int("MAX_ENCODE_SECONDS", 4 * 3600),  # 0 disables the watchdog
        "PROGRESS_CHANNEL_SIZE": _env_int("PROGRESS_CHANNEL_SIZE", 64),
        # Retention
        "RETENTION_TTL": _env_int("RETENTION_TTL", 24 * 3600),
        "SWEEP_INTERVAL": _env_int("SWEEP_INTERVAL", 3600),
        "INPUT_CLEANUP_DELAY": _env_int("INPUT_CLEANUP_DELAY", 3600),
        # Engine
        "FFMPEG_PATH": os.getenv("FFMPEG_PATH", "ffmpeg"),
        "FFPROBE_PATH": os.getenv("FFPROBE_PATH", "ffprobe"),
        # Job store
        "JOB_STORE": os.getenv("JOB_STORE", "memory").strip().lower(),
        "REDIS_URL": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        "START_BACKGROUND_SERVICES": _env_bool("START_BACKGROUND_SERVICES", True),
    }
