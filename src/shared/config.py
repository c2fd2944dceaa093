"""
Shared Configuration - Application Settings and Environment Management
Centralized configuration management for Offline Edge.

This module provides:
- Environment-based configuration
- Type-safe settings with validation
- Cache generation, manifest and pre-warm path lists
- Mutation queue storage settings
- Notification defaults and routing
"""
from typing import Optional, List, Dict
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from enum import Enum


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheBackend(str, Enum):
    """Storage backends for cache generations."""
    MEMORY = "memory"
    REDIS = "redis"


class OfflineSettings(BaseSettings):
    """Offline caching, queueing and background sync settings."""

    model_config = SettingsConfigDict(
        env_prefix="OFFLINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Version and origin
    version: str = Field("1.0.0", description="Current cache generation version")
    origin: str = Field("http://localhost:3000", description="Origin of the host application")

    # Cache storage
    cache_backend: CacheBackend = Field(CacheBackend.MEMORY)
    redis_url: str = Field("redis://localhost:6379")
    redis_db: int = Field(0)
    redis_key_prefix: str = Field("offline-edge")

    # Classification
    api_prefix: str = Field("/api/")
    static_extensions: List[str] = Field(
        [".js", ".css", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".woff", ".woff2", ".ico", ".webp"]
    )
    critical_paths: List[str] = Field(["/api/auth/me"])
    offline_document: str = Field("/offline.html")

    # Build-time path lists
    static_manifest: List[str] = Field([
        "/",
        "/index.html",
        "/manifest.json",
        "/offline.html",
        "/static/js/bundle.js",
        "/static/css/main.css",
        "/icons/icon-192x192.png",
        "/icons/icon-512x512.png",
    ])
    api_prewarm_paths: List[str] = Field([
        "/api/auth/me",
        "/api/dashboard/stats",
        "/api/production/summary",
        "/api/quality/metrics",
        "/api/inventory/levels",
    ])
    refresh_paths: List[str] = Field(["/api/dashboard/stats"])

    # Background sync
    sync_tag: str = Field("background-sync")
    periodic_sync_tag: str = Field("update-dashboard")
    refresh_interval_seconds: int = Field(3600)
    stuck_record_threshold: int = Field(5, description="Consecutive replay failures before warning")

    # Mutation queue
    queue_database_url: str = Field("sqlite+aiosqlite:///./offline_queue.db")
    queue_db_echo: bool = Field(False)

    # Network
    fetch_timeout_seconds: Optional[float] = Field(None)

    # Notifications
    notification_locale: str = Field("en")
    notification_icon: str = Field("/icons/icon-192x192.png")
    notification_badge: str = Field("/icons/badge-72x72.png")
    notification_routes: Dict[str, str] = Field({"explore": "/dashboard"})
    notification_dismiss_actions: List[str] = Field(["close", "dismiss"])

    @field_validator("api_prefix")
    @classmethod
    def validate_api_prefix(cls, v):
        if not v.startswith("/"):
            raise ValueError("API prefix must start with '/'")
        return v

    @field_validator("static_extensions")
    @classmethod
    def normalize_extensions(cls, v):
        return [ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v]

    @field_validator("stuck_record_threshold", "refresh_interval_seconds")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v):
        if not v.strip():
            raise ValueError("Version must not be empty")
        return v.strip()


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    log_level: LogLevel = Field(LogLevel.INFO)
    log_format: str = Field("colored", description="json, colored or standard")
    log_file: Optional[str] = Field(None)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    environment: Environment = Field(Environment.DEVELOPMENT)
    debug: bool = Field(True)
    app_name: str = Field("Offline Edge")
    app_version: str = Field("1.0.0")

    # Control plane
    host: str = Field("127.0.0.1")
    port: int = Field(8700)

    offline: OfflineSettings = Field(default_factory=OfflineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get application settings.
    This function can be used as a FastAPI dependency.
    """
    return settings


def get_offline_settings() -> OfflineSettings:
    """Get offline layer settings."""
    return settings.offline


def validate_configuration(config: Optional[Settings] = None) -> List[str]:
    """
    Validate the current configuration and return any errors.

    Returns:
        List of validation error messages
    """
    config = config or settings
    offline = config.offline
    errors = []

    if offline.offline_document not in offline.static_manifest:
        errors.append("Offline document is not part of the static manifest")

    missing = [p for p in offline.critical_paths if not p.startswith(offline.api_prefix)]
    if missing:
        errors.append(f"Critical paths outside the API prefix: {', '.join(missing)}")

    if offline.cache_backend == CacheBackend.REDIS and not offline.redis_url:
        errors.append("Redis URL is required for the redis cache backend")

    if config.is_production():
        if config.debug:
            errors.append("Debug mode should be disabled in production")
        if offline.fetch_timeout_seconds is None:
            errors.append("No fetch timeout configured; a hung request blocks replay and refresh")

    return errors


def get_config_summary(config: Optional[Settings] = None) -> dict:
    """Get a summary of the current configuration."""
    config = config or settings
    offline = config.offline
    return {
        "environment": config.environment,
        "app_name": config.app_name,
        "app_version": config.app_version,
        "offline": {
            "version": offline.version,
            "origin": offline.origin,
            "cache_backend": offline.cache_backend,
            "static_manifest_size": len(offline.static_manifest),
            "api_prewarm_size": len(offline.api_prewarm_paths),
            "sync_tag": offline.sync_tag,
            "periodic_sync_tag": offline.periodic_sync_tag,
        },
    }
