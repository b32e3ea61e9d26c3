"""Unified configuration management with env support, validation, and environment switching."""
import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from media_ingest.core.exceptions import ConfigurationException

ENV_PREFIX = "INGEST_"

DEFAULT_ALLOWED_MIME_TYPES = [
    # Video
    "video/mp4",
    "video/webm",
    "video/ogg",
    "video/avi",
    "video/mov",
    "video/wmv",
    "video/quicktime",
    # Audio
    "audio/mp3",
    "audio/wav",
    "audio/ogg",
    "audio/mpeg",
    # Documents
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    # Images
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
]


class Environment(Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(Enum):
    """Log level."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class UploadConfig:
    """Chunked upload limits and staging."""
    max_file_size: int
    chunk_size: int
    staging_dir: str
    allowed_mime_types: List[str] = field(default_factory=list)
    stale_session_max_age_hours: float = 24.0
    stale_sweep_interval_seconds: float = 3600.0
    enable_stale_sweeper: bool = True


@dataclass
class StorageConfig:
    """Durable storage backend selection."""
    backend: str
    root: str
    public_base_url: str
    retry_attempts: int = 3
    retry_base_delay: float = 1.0


@dataclass
class MinioConfig:
    """MinIO configuration."""
    endpoint: str
    access_key: str
    secret_key: str
    bucket_name: str = "media-uploads"
    secure: bool = False
    part_size: int = 10 * 1024 * 1024
    presigned_url_expiry_hours: int = 24


@dataclass
class RedisConfig:
    """Redis configuration."""
    url: str = "redis://localhost:6379/0"
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    max_connections: int = 20
    session_lock_timeout: int = 30
    session_lock_wait_timeout: float = 10.0
    connection_pool_timeout: int = 5
    key_prefix: str = "upload"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    log_dir: str = "logs"
    max_file_size: int = 10 * 1024 * 1024
    backup_count: int = 10


class Settings(BaseSettings):
    """Application settings backed by pydantic-settings."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=[".env.dev", ".env", ".env.local"],
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow"
    )

    # Application
    app_name: str = Field(default="Media Chunk Ingest API", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")

    # Server
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8000, ge=1, le=65535, description="Bind port")

    # Chunked upload
    max_file_size: int = Field(default=2 * 1024 * 1024 * 1024, ge=1)  # 2GB
    chunk_size: int = Field(default=5 * 1024 * 1024, ge=1)  # 5MB
    allowed_mime_types: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES))
    staging_dir: str = Field(default="/tmp/media_ingest/staging")
    stale_session_max_age_hours: float = Field(default=24.0, gt=0)
    stale_sweep_interval_seconds: float = Field(default=3600.0, gt=0)
    enable_stale_sweeper: bool = Field(default=True)

    # Durable storage
    storage_backend: Literal["local", "minio"] = Field(default="local")
    storage_root: str = Field(default="/tmp/media_ingest/storage")
    public_base_url: str = Field(default="/uploads")
    storage_retry_attempts: int = Field(default=3, ge=1, le=10)
    storage_retry_base_delay: float = Field(default=1.0, ge=0.0, le=60.0)

    # MinIO
    minio_endpoint: str = Field(default="localhost:9000")
    minio_access_key: str = Field(default="minioadmin")
    minio_secret_key: str = Field(default="minioadmin")
    minio_bucket_name: str = Field(default="media-uploads")
    minio_secure: bool = Field(default=False)
    minio_part_size: int = Field(default=10 * 1024 * 1024, ge=5 * 1024 * 1024, le=5 * 1024 * 1024 * 1024)
    minio_presigned_url_expiry_hours: int = Field(default=24, ge=1, le=168)

    # Session registry
    session_backend: Literal["memory", "redis"] = Field(default="memory")

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_db: int = Field(default=0, ge=0, le=15)
    redis_password: Optional[str] = Field(default=None)
    redis_max_connections: int = Field(default=20, ge=1, le=100)
    redis_session_lock_timeout: int = Field(default=30, ge=1, le=300)
    redis_session_lock_wait_timeout: float = Field(default=10.0, gt=0, le=300)
    redis_connection_pool_timeout: int = Field(default=5, ge=1, le=60)
    redis_key_prefix: str = Field(default="upload")

    # Progress notifications
    enable_progress_publisher: bool = Field(default=False)
    progress_channel_prefix: str = Field(default="upload:progress")

    # HTTP basic auth
    auth_username: str = Field(default="admin")
    auth_password: str = Field(default="admin")

    # Logging
    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_dir: str = Field(default="logs")
    log_max_file_size: int = Field(default=10 * 1024 * 1024, ge=1024 * 1024, le=1024 * 1024 * 1024)
    log_backup_count: int = Field(default=10, ge=1, le=50)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        """Accept environment names in any case."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v):
        """Accept log level names in any case."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @field_validator("allowed_mime_types")
    @classmethod
    def validate_mime_types(cls, v):
        """Normalize MIME types and reject malformed entries."""
        normalized = []
        for mime_type in v:
            mime_type = mime_type.strip().lower()
            if "/" not in mime_type:
                raise ValueError(f"Invalid MIME type: {mime_type}")
            normalized.append(mime_type)
        if not normalized:
            raise ValueError("At least one MIME type must be allowed")
        return normalized

    @model_validator(mode="before")
    @classmethod
    def validate_dependencies(cls, values):
        """Validate settings that depend on each other."""
        environment = values.get("environment", Environment.DEVELOPMENT)
        if isinstance(environment, str):
            environment = Environment(environment.lower())

        if environment == Environment.PRODUCTION:
            # Default credentials are not acceptable outside development
            if values.get("auth_password", "admin") == "admin":
                raise ValueError("Production environment requires a non-default auth password")
            values["debug"] = False

        return values

    def get_upload_config(self) -> UploadConfig:
        """Return chunked upload configuration."""
        return UploadConfig(
            max_file_size=self.max_file_size,
            chunk_size=self.chunk_size,
            staging_dir=self.staging_dir,
            allowed_mime_types=list(self.allowed_mime_types),
            stale_session_max_age_hours=self.stale_session_max_age_hours,
            stale_sweep_interval_seconds=self.stale_sweep_interval_seconds,
            enable_stale_sweeper=self.enable_stale_sweeper
        )

    def get_storage_config(self) -> StorageConfig:
        """Return durable storage configuration."""
        return StorageConfig(
            backend=self.storage_backend,
            root=self.storage_root,
            public_base_url=self.public_base_url,
            retry_attempts=self.storage_retry_attempts,
            retry_base_delay=self.storage_retry_base_delay
        )

    def get_minio_config(self) -> MinioConfig:
        """Return MinIO configuration."""
        return MinioConfig(
            endpoint=self.minio_endpoint,
            access_key=self.minio_access_key,
            secret_key=self.minio_secret_key,
            bucket_name=self.minio_bucket_name,
            secure=self.minio_secure,
            part_size=self.minio_part_size,
            presigned_url_expiry_hours=self.minio_presigned_url_expiry_hours
        )

    def get_redis_config(self) -> RedisConfig:
        """Return Redis configuration."""
        return RedisConfig(
            url=self.redis_url,
            host=self.redis_host,
            port=self.redis_port,
            db=self.redis_db,
            password=self.redis_password,
            max_connections=self.redis_max_connections,
            session_lock_timeout=self.redis_session_lock_timeout,
            session_lock_wait_timeout=self.redis_session_lock_wait_timeout,
            connection_pool_timeout=self.redis_connection_pool_timeout,
            key_prefix=self.redis_key_prefix
        )

    def get_logging_config(self) -> LoggingConfig:
        """Return logging configuration."""
        return LoggingConfig(
            level=self.log_level,
            log_dir=self.log_dir,
            max_file_size=self.log_max_file_size,
            backup_count=self.log_backup_count
        )


class ConfigManager:
    """Configuration manager (singleton)."""

    _instance: Optional['ConfigManager'] = None
    _settings: Optional[Settings] = None
    _config_cache: Dict[str, Any] = {}

    def __new__(cls, *args, **kwargs):
        """Ensure only one instance is created."""
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, config_file: Optional[str] = None):
        """Load settings once per process."""
        if hasattr(self, '_initialized'):
            return

        self._initialized = True
        self.config_file = config_file

        self._load_settings()

    def _load_settings(self):
        """Load settings from an optional YAML file and the environment."""
        try:
            if self.config_file and Path(self.config_file).exists():
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    config_data = yaml.safe_load(f) or {}

                # YAML keys become prefixed environment variables
                for key, value in config_data.items():
                    env_key = f"{ENV_PREFIX}{key.upper()}"
                    if isinstance(value, (dict, list)):
                        os.environ[env_key] = json.dumps(value)
                    else:
                        os.environ[env_key] = str(value)

            self._settings = Settings()

            self._validate_settings()

            self._config_cache = {
                "upload": self._settings.get_upload_config(),
                "storage": self._settings.get_storage_config(),
                "minio": self._settings.get_minio_config(),
                "redis": self._settings.get_redis_config(),
                "logging": self._settings.get_logging_config()
            }

        except ConfigurationException:
            raise
        except Exception as e:
            raise ConfigurationException(f"Failed to load settings: {str(e)}")

    def _validate_settings(self):
        """Validate required settings."""
        if not self._settings:
            raise ConfigurationException("Settings not loaded")

        required_configs = [("staging_dir", self._settings.staging_dir)]
        if self._settings.storage_backend == "local":
            required_configs.append(("storage_root", self._settings.storage_root))
        if self._settings.storage_backend == "minio":
            required_configs.append(("minio_endpoint", self._settings.minio_endpoint))
            required_configs.append(("minio_bucket_name", self._settings.minio_bucket_name))

        for name, value in required_configs:
            if not value:
                raise ConfigurationException(f"Required configuration missing: {name}", config_key=name)

        if Path(self._settings.staging_dir).resolve() == Path(self._settings.storage_root).resolve():
            raise ConfigurationException(
                "staging_dir and storage_root must be different directories",
                config_key="staging_dir"
            )

    @property
    def settings(self) -> Settings:
        """Return the settings instance."""
        if not self._settings:
            raise ConfigurationException("Settings not initialized")
        return self._settings

    def get(self, key: str, default: Any = None) -> Any:
        """Return a single setting value."""
        return getattr(self.settings, key, default)

    def get_typed_config(self, config_type: str) -> Any:
        """Return one of the grouped configuration views."""
        if config_type not in self._config_cache:
            raise ConfigurationException(f"Unknown config type: {config_type}")
        return self._config_cache[config_type]

    def reload(self):
        """Reload settings from the environment."""
        self._load_settings()

    def export_config(self, format: Literal['yaml', 'json', 'env'] = 'yaml') -> str:
        """Export the effective configuration, hiding secrets."""
        config_dict = self.settings.model_dump(mode="json")
        for secret in ("minio_secret_key", "redis_password", "auth_password"):
            if config_dict.get(secret):
                config_dict[secret] = "***"

        if format == 'json':
            return json.dumps(config_dict, indent=2, ensure_ascii=False)
        elif format == 'env':
            lines = []
            for key, value in config_dict.items():
                env_key = f"{ENV_PREFIX}{key.upper()}"
                if isinstance(value, (dict, list)):
                    lines.append(f"{env_key}='{json.dumps(value)}'")
                else:
                    lines.append(f"{env_key}={value}")
            return "\n".join(lines)
        else:
            return yaml.dump(config_dict, default_flow_style=False, allow_unicode=True)


# Global configuration manager instance
config_manager = ConfigManager(os.getenv(f"{ENV_PREFIX}CONFIG_FILE"))
