from pydantic import BaseModel, Field, field_validator

from livecast.shared.config import config


def _env_str(key: str, default: str) -> str:
    return (config.get(key) or "").strip() or default


def _env_float(key: str, default: float) -> float:
    return float((config.get(key) or "").strip() or default)


def _env_int(key: str, default: int) -> int:
    return int((config.get(key) or "").strip() or default)


class AppEnvironConfig(BaseModel):
    # When enabled, transcription/translation use deterministic stubs and avoid network calls.
    DEMO_MODE: bool = config.get_bool("DEMO_MODE", True)
    DEBUG: bool = config.get_bool("DEBUG", False)

    API_HOST: str = _env_str("API_HOST", "0.0.0.0")
    API_PORT: int = _env_int("API_PORT", 8000)
    API_WORKERS: int = _env_int("API_WORKERS", 1)
    API_CORS_ORIGINS: list[str] = [
        origin.strip()
        for origin in _env_str("API_CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    # OpenAI configuration (transcription + translation providers)
    OPENAI_API_KEY: str | None = (config.get("OPENAI_API_KEY") or "").strip() or None
    OPENAI_TRANSCRIBE_MODEL: str = _env_str("OPENAI_TRANSCRIBE_MODEL", "whisper-1")
    OPENAI_TRANSLATE_MODEL: str = _env_str("OPENAI_TRANSLATE_MODEL", "gpt-4.1-nano")

    # Archive backend: "memory" keeps captions in-process, "mongo" persists through Beanie
    ARCHIVE_BACKEND: str = _env_str("ARCHIVE_BACKEND", "memory").lower()
    MONGO_LABEL: str = _env_str("MONGO_LABEL", "livecast")

    # Optional fan-out of caption events to other replicas through Redis pub/sub
    REDIS_RELAY_ENABLED: bool = config.get_bool("REDIS_RELAY_ENABLED", False)
    REDIS_LABEL: str = _env_str("REDIS_LABEL", "default")

    # AWS S3 configuration for caption exports
    AWS_ACCESS_KEY_ID: str | None = (config.get("AWS_ACCESS_KEY_ID") or "").strip() or None
    AWS_SECRET_ACCESS_KEY: str | None = (config.get("AWS_SECRET_ACCESS_KEY") or "").strip() or None
    AWS_REGION: str = _env_str("AWS_REGION", "us-east-1")
    S3_CAPTION_BUCKET: str | None = (config.get("S3_CAPTION_BUCKET") or "").strip() or None
    S3_CAPTION_PREFIX: str = _env_str("S3_CAPTION_PREFIX", "captions")

    LOGFIRE_ENABLE: bool = config.get_bool("LOGFIRE_ENABLE", False)
    LOGFIRE_TOKEN: str | None = (config.get("LOGFIRE_TOKEN") or "").strip() or None


class PipelineSettings(BaseModel):
    """Tunables for the per-session captioning pipeline."""

    # Audio chunking
    chunk_seconds: float = Field(default_factory=lambda: _env_float("CHUNK_SECONDS", 10.0), gt=0)
    sample_rate: int = Field(default_factory=lambda: _env_int("AUDIO_SAMPLE_RATE", 16000), gt=0)
    sample_width: int = Field(
        default_factory=lambda: _env_int("AUDIO_SAMPLE_WIDTH", 2), gt=0, validate_default=True
    )
    channels: int = Field(default_factory=lambda: _env_int("AUDIO_CHANNELS", 1), gt=0)
    min_tail_chunk_seconds: float = Field(
        default_factory=lambda: _env_float("MIN_TAIL_CHUNK_SECONDS", 0.5), ge=0
    )
    source_language: str | None = Field(
        default_factory=lambda: (config.get("SOURCE_LANGUAGE") or "").strip() or None
    )

    # Pipelining
    inflight_window: int = Field(default_factory=lambda: _env_int("INFLIGHT_WINDOW", 4), ge=1)
    max_slot_hold_seconds: float = Field(
        default_factory=lambda: _env_float("MAX_SLOT_HOLD_SECONDS", 120.0), gt=0
    )
    consecutive_failure_threshold: int = Field(
        default_factory=lambda: _env_int("CONSECUTIVE_FAILURE_THRESHOLD", 5), ge=1
    )
    stop_grace_seconds: float = Field(
        default_factory=lambda: _env_float("STOP_GRACE_SECONDS", 30.0), ge=0
    )
    error_log_limit: int = Field(default_factory=lambda: _env_int("ERROR_LOG_LIMIT", 50), ge=1)

    # External calls
    transcribe_timeout_factor: float = Field(
        default_factory=lambda: _env_float("TRANSCRIBE_TIMEOUT_FACTOR", 3.0), gt=0
    )
    service_max_retries: int = Field(
        default_factory=lambda: _env_int("SERVICE_MAX_RETRIES", 2), ge=0
    )
    retry_base_delay: float = Field(default_factory=lambda: _env_float("RETRY_BASE_DELAY", 0.5), ge=0)
    retry_max_delay: float = Field(default_factory=lambda: _env_float("RETRY_MAX_DELAY", 8.0), ge=0)
    translation_timeout: float = Field(
        default_factory=lambda: _env_float("TRANSLATION_TIMEOUT", 10.0), gt=0
    )
    translation_deadline: float = Field(
        default_factory=lambda: _env_float("TRANSLATION_DEADLINE", 20.0), gt=0
    )
    global_max_external_calls: int = Field(
        default_factory=lambda: _env_int("GLOBAL_MAX_EXTERNAL_CALLS", 32), ge=1
    )

    # Source reconnects
    reconnect_attempts: int = Field(default_factory=lambda: _env_int("RECONNECT_ATTEMPTS", 3), ge=0)
    reconnect_base_delay: float = Field(
        default_factory=lambda: _env_float("RECONNECT_BASE_DELAY", 1.0), ge=0
    )

    # Archive
    archive_max_retries: int = Field(
        default_factory=lambda: _env_int("ARCHIVE_MAX_RETRIES", 3), ge=0
    )
    archive_flush_timeout: float = Field(
        default_factory=lambda: _env_float("ARCHIVE_FLUSH_TIMEOUT", 30.0), ge=0
    )

    # Live delivery
    subscriber_send_timeout: float = Field(
        default_factory=lambda: _env_float("SUBSCRIBER_SEND_TIMEOUT", 5.0), gt=0
    )
    subscriber_max_failures: int = Field(
        default_factory=lambda: _env_int("SUBSCRIBER_MAX_FAILURES", 3), ge=1
    )

    @field_validator("sample_width")
    @classmethod
    def _check_sample_width(cls, value: int) -> int:
        # raw PCM widths ffmpeg can emit
        if value not in (1, 2, 4):
            raise ValueError("sample_width must be 1, 2 or 4 bytes")
        return value

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.sample_width * self.channels


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config


def get_pipeline_settings() -> PipelineSettings:
    return PipelineSettings()
