from __future__ import annotations

import os
from dataclasses import dataclass


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class PulseSettings:
    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "openai/gpt-4o-mini"
    site_url: str = ""
    app_name: str = "Pulse"
    request_timeout_seconds: float = 30.0
    watchdog_seconds: float = 120.0
    history_limit: int = 10
    stream_batch_size: int = 3
    stream_interval_seconds: float = 0.012
    notice_seconds: float = 2.2
    max_image_dimension: int = 2000
    request_image_dimension: int = 1024
    request_image_max_bytes: int = 1_000_000
    keep_local_only: bool = True
    blur_faces: bool = False
    archive_path: str = ""
    greeting: bool = True

    @classmethod
    def from_env(cls) -> "PulseSettings":
        return cls(
            api_key=_env_str("PULSE_LLM_API_KEY") or _env_str("OPENROUTER_API_KEY"),
            base_url=_env_str("PULSE_LLM_BASE_URL", cls.base_url).rstrip("/"),
            model=_env_str("PULSE_LLM_MODEL", cls.model),
            site_url=_env_str("PULSE_SITE_URL"),
            app_name=_env_str("PULSE_APP_NAME", cls.app_name),
            request_timeout_seconds=_env_float("PULSE_REQUEST_TIMEOUT_SECONDS", cls.request_timeout_seconds),
            watchdog_seconds=_env_float("PULSE_WATCHDOG_SECONDS", cls.watchdog_seconds),
            history_limit=max(0, _env_int("PULSE_HISTORY_LIMIT", cls.history_limit)),
            stream_batch_size=max(1, _env_int("PULSE_STREAM_BATCH_SIZE", cls.stream_batch_size)),
            stream_interval_seconds=max(0.0, _env_float("PULSE_STREAM_INTERVAL_SECONDS", cls.stream_interval_seconds)),
            notice_seconds=_env_float("PULSE_NOTICE_SECONDS", cls.notice_seconds),
            max_image_dimension=max(1, _env_int("PULSE_MAX_IMAGE_DIMENSION", cls.max_image_dimension)),
            keep_local_only=_env_flag("PULSE_KEEP_LOCAL_ONLY", cls.keep_local_only),
            blur_faces=_env_flag("PULSE_BLUR_FACES", cls.blur_faces),
            archive_path=_env_str("PULSE_ARCHIVE_PATH"),
            greeting=_env_flag("PULSE_GREETING", cls.greeting),
        )
