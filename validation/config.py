"""
Configuration for FieldSync.

pydantic-settings model: values come from keyword arguments or from
FIELDSYNC_-prefixed environment variables (e.g. FIELDSYNC_REMOTE_URL),
validated with fail-fast behavior and sensible defaults.
"""

from typing import Optional
import logging

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger('FieldSync.config')

VALID_LOG_LEVELS = ('trace', 'debug', 'info', 'warning', 'error')


class FieldSyncConfig(BaseSettings):
    """
    FieldSync configuration with validation.

    Storage:
        data_dir: Directory holding the queue, DLQ and state files

    Remote store:
        remote_url: Base URL of the remote store (required to drain via HTTP)
        remote_api_key: API key sent as apikey/bearer headers
        primary_key: Primary key field in record payloads (default: 'id')
        upsert_inserts: Send inserts as merge-duplicates upserts (default: True)
        connect_timeout: Connect timeout in seconds (default: 5.0, range: 1.0-30.0)
        item_timeout: Per-operation timeout in seconds (default: 30.0, range: 1.0-300.0)

    Queue and retry tunables:
        default_priority: Priority for operations that pass none (default: 5)
        max_retries: Transient failures before DLQ (default: 5, range: 1-20)
        backoff_base / backoff_cap: Per-operation back-off in seconds
        circuit_failure_threshold: Unreachable attempts before pausing drains
        circuit_recovery_timeout: Seconds an open circuit pauses drains
        poll_interval: Periodic drain in seconds (default: 0 = disabled)
        probe_interval: Active reachability probe in seconds (default: 0 = disabled)
        dlq_retention_days: Days to retain dead letters (default: 30, range: 1-365)

    Logging:
        log_level: trace, debug, info, warning or error (default: info)
        json_logs: JSON log lines (default: True)
    """

    model_config = SettingsConfigDict(env_prefix="FIELDSYNC_", extra="ignore")

    data_dir: str = "./fieldsync-data"

    remote_url: Optional[str] = None
    remote_api_key: Optional[str] = None
    primary_key: str = Field(default="id", min_length=1)
    upsert_inserts: bool = True
    connect_timeout: float = Field(default=5.0, ge=1.0, le=30.0)
    item_timeout: float = Field(default=30.0, ge=1.0, le=300.0)

    default_priority: int = 5
    max_retries: int = Field(default=5, ge=1, le=20)
    backoff_base: float = Field(default=5.0, gt=0.0, le=600.0)
    backoff_cap: float = Field(default=80.0, gt=0.0, le=3600.0)
    circuit_failure_threshold: int = Field(default=3, ge=1, le=100)
    circuit_recovery_timeout: float = Field(default=60.0, ge=1.0, le=3600.0)
    poll_interval: float = Field(default=0.0, ge=0.0, le=86400.0)
    probe_interval: float = Field(default=0.0, ge=0.0, le=3600.0)

    dlq_retention_days: int = Field(default=30, ge=1, le=365)

    log_level: str = "info"
    json_logs: bool = True

    @field_validator('remote_url', mode='after')
    @classmethod
    def validate_remote_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate remote_url is a valid HTTP/HTTPS URL."""
        if v is None:
            return None
        if not v.startswith(('http://', 'https://')):
            raise ValueError('remote_url must start with http:// or https://')
        return v.rstrip('/')  # Normalize: remove trailing slash

    @field_validator('data_dir', mode='after')
    @classmethod
    def validate_data_dir(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('data_dir is required')
        return v

    @field_validator('log_level', mode='before')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log_level is one of: trace, debug, info, warning, error."""
        if isinstance(v, str) and v.lower() in VALID_LOG_LEVELS:
            return v.lower()
        raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}, got: {v}")

    @field_validator('upsert_inserts', 'json_logs', mode='before')
    @classmethod
    def validate_booleans(cls, v):
        """Ensure boolean fields are actual booleans, not arbitrary truthy strings."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            lower = v.lower()
            if lower in ('true', '1', 'yes'):
                return True
            if lower in ('false', '0', 'no'):
                return False
            raise ValueError(f"Invalid boolean value: {v}")
        raise ValueError(f"Expected boolean, got {type(v).__name__}")

    def log_config(self) -> None:
        """Log configuration with masked API key."""
        key = self.remote_api_key
        if not key:
            masked = 'none'
        elif len(key) > 8:
            masked = key[:4] + '****' + key[-4:]
        else:
            masked = '****'
        log.info(
            f"FieldSync config: data_dir={self.data_dir}, url={self.remote_url}, "
            f"api_key={masked}, primary_key={self.primary_key}, "
            f"max_retries={self.max_retries}, item_timeout={self.item_timeout}s, "
            f"backoff={self.backoff_base}-{self.backoff_cap}s, "
            f"circuit={self.circuit_failure_threshold}/{self.circuit_recovery_timeout}s, "
            f"poll_interval={self.poll_interval}s, probe_interval={self.probe_interval}s, "
            f"dlq_retention_days={self.dlq_retention_days}"
        )
        if self.log_level == 'trace':
            log.warning("TRACE LOGGING ENABLED, every queued operation is logged")


def validate_config(config_dict: dict) -> tuple[Optional[FieldSyncConfig], Optional[str]]:
    """
    Validate configuration dictionary and return FieldSyncConfig or error message.

    Args:
        config_dict: Dictionary containing configuration values

    Returns:
        Tuple of (FieldSyncConfig, None) on success,
        or (None, error_message) on validation failure
    """
    try:
        config = FieldSyncConfig(**config_dict)
        return (config, None)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            field = '.'.join(str(loc) for loc in error['loc'])
            msg = error['msg']
            errors.append(f"{field}: {msg}")
        error_message = '; '.join(errors)
        return (None, error_message)


__all__ = ['FieldSyncConfig', 'validate_config', 'ValidationError', 'VALID_LOG_LEVELS']
