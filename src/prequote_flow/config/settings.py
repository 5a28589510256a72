"""Configuration settings using Pydantic."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """WebSocket server configuration."""
    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 8765
    health_port: int = 8080
    max_sessions: int = 10000
    session_idle_ttl_seconds: float = 1800.0


class SupabaseSettings(BaseSettings):
    """Supabase configuration."""
    model_config = SettingsConfigDict(env_prefix="SUPABASE_")

    url: str = ""
    key: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.key)


class StorageSettings(BaseSettings):
    """Storage backend configuration."""
    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    backend: str = "local"  # local, supabase
    data_path: str = "./data"


class FlowSettings(BaseSettings):
    """Qualification flow behavior."""
    model_config = SettingsConfigDict(env_prefix="FLOW_")

    reset_delay_seconds: float = 0.3
    source_tool: str = "sample-report"
    tracking_source_tool: str = "sample_report"
    conversion_action: str = "prequote_v2_signup"
    lead_value: int = 75
    flow_version: str = "prequote_v2"
    hide_after_completion: bool = False
    ui_only: bool = False  # skip every backend call
    quote_scanner_path: str = "/quote-scanner"
    consultation_path: str = "/consultation"
    guide_pdf_url: str = "/downloads/7-red-flags-cheatsheet.pdf"


class MonitoringSettings(BaseSettings):
    """Sentry error reporting; off unless a DSN is set."""
    model_config = SettingsConfigDict(env_prefix="SENTRY_")

    dsn: str = ""
    environment: str = "development"
    traces_sample_rate: float = 0.1

    @property
    def is_configured(self) -> bool:
        return bool(self.dsn)


class LoggingSettings(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = "INFO"


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    server: ServerSettings = Field(default_factory=ServerSettings)
    supabase: SupabaseSettings = Field(default_factory=SupabaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    flow: FlowSettings = Field(default_factory=FlowSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
