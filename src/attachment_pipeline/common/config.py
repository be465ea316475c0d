"""
Централизованная конфигурация проекта (ENV / .env).

Важно:
- настройки читаются из .env и переменных окружения
- типизированные значения через pydantic-settings
- любое поле можно переопределить через <ALIAS>_FILE (docker secrets)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # -------------------------------------------------------------------------
    # Runtime
    # -------------------------------------------------------------------------
    app_env: str = Field(default="dev", alias="APP_ENV")
    service_name: str = Field(default="worker-files", alias="SERVICE_NAME")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8020, alias="API_PORT")

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------
    redis_url: str = Field(default="redis://redis:6379/0", alias="REDIS_URL")
    queue_mode: str = Field(default="redis", alias="QUEUE_MODE")  # redis|inline
    queue_prefix: str = Field(default="fpq", alias="QUEUE_PREFIX")
    queue_max_attempts: int = Field(default=3, alias="QUEUE_MAX_ATTEMPTS")
    queue_backoff_base_sec: float = Field(default=2.0, alias="QUEUE_BACKOFF_BASE_SEC")
    queue_backoff_cap_sec: float = Field(default=60.0, alias="QUEUE_BACKOFF_CAP_SEC")
    lease_ttl_sec: int = Field(default=600, alias="LEASE_TTL_SEC")

    # Ретеншн завершённых задач (как removeOnComplete / removeOnFail)
    retention_completed_sec: int = Field(default=3600, alias="RETENTION_COMPLETED_SEC")
    retention_completed_keep: int = Field(default=100, alias="RETENTION_COMPLETED_KEEP")
    retention_failed_sec: int = Field(default=86_400, alias="RETENTION_FAILED_SEC")
    retention_interval_sec: int = Field(default=300, alias="RETENTION_INTERVAL_SEC")

    # -------------------------------------------------------------------------
    # Workers
    # -------------------------------------------------------------------------
    worker_concurrency: int = Field(default=2, alias="WORKER_CONCURRENCY")
    worker_poll_interval_sec: float = Field(default=5.0, alias="WORKER_POLL_INTERVAL_SEC")
    # 0 = брать таймаут из таблицы типов файлов
    worker_job_timeout_sec: float = Field(default=0.0, alias="WORKER_JOB_TIMEOUT_SEC")
    # 0 = не поднимать отдельный /metrics у процесса воркеров
    worker_metrics_port: int = Field(default=0, alias="WORKER_METRICS_PORT")

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------
    storage_dir: str = Field(default="./data/files", alias="STORAGE_DIR")
    storage_public_base_url: str = Field(default="/files", alias="STORAGE_PUBLIC_BASE_URL")

    # -------------------------------------------------------------------------
    # Processors
    # -------------------------------------------------------------------------
    thumbnail_max_width: int = Field(default=300, alias="THUMBNAIL_MAX_WIDTH")
    thumbnail_max_height: int = Field(default=300, alias="THUMBNAIL_MAX_HEIGHT")
    thumbnail_format: str = Field(default="WEBP", alias="THUMBNAIL_FORMAT")
    model3d_compress_threshold_mb: float = Field(
        default=5.0, alias="MODEL3D_COMPRESS_THRESHOLD_MB"
    )
    model3d_draco_quantization_bits: int = Field(
        default=14, alias="MODEL3D_DRACO_QUANTIZATION_BITS"
    )

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json|text

    def model_post_init(self, __context) -> None:
        _apply_file_overrides(self)


def _apply_file_overrides(settings: Settings) -> None:
    alias_to_field = {}
    for name, field in Settings.model_fields.items():
        alias = field.alias or name
        alias_to_field[str(alias)] = name
        alias_to_field[str(name)] = name

    for key, path in os.environ.items():
        if not key.endswith("_FILE"):
            continue
        base = key[: -len("_FILE")]
        target = alias_to_field.get(base)
        if not target:
            continue
        file_path = (path or "").strip()
        if not file_path:
            continue
        try:
            raw = Path(file_path).read_text(encoding="utf-8")
        except Exception as e:
            logging.getLogger("attachment-pipeline").error(
                "config_file_read_failed",
                extra={"payload": {"env_key": key, "path": file_path, "error": str(e)[:200]}},
            )
            raise RuntimeError(f"Failed to read {key} from {file_path}") from e
        setattr(settings, target, raw.strip())


_SETTINGS = Settings()


def get_settings() -> Settings:
    return _SETTINGS
