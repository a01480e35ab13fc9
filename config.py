"""Configuration module for the Recurring Reminder Engine.

This module provides configuration settings using Pydantic Settings.
Environment variables can be used to override default values.
"""

import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings for the reminder engine.

    All settings can be overridden via environment variables.
    Example: export DATABASE_URL="postgresql://..."
    """

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./reminders.db"
    """Database connection URL. Default: SQLite file in current directory"""

    # API Server Configuration
    API_HOST: str = "0.0.0.0"
    """API server host address"""

    API_PORT: int = 8005
    """API server port"""

    # MCP Server Configuration
    MCP_HOST: str = "127.0.0.1"
    """MCP server host address"""

    MCP_PORT: int = 8006
    """MCP server port for SSE transport (separate from REST API)"""

    MCP_TRANSPORT: str = "sse"
    """MCP transport type: 'stdio' for local, 'sse' for network access"""

    # Reminder Configuration
    DEFAULT_TIMEZONE: str = "Asia/Kolkata"
    """IANA timezone written into a recurrence pattern when the creator gives none"""

    MAX_REMINDERS_PER_OWNER: int = 1000
    """Maximum number of reminders allowed per owner"""

    EXCLUSION_SEARCH_LIMIT: int = 100
    """Upper bound on occurrences examined when skipping exclusion dates"""

    # Scheduler Configuration
    SCHEDULER_ENABLED: bool = True
    """Enable/disable the due-reminder ticker"""

    SCHEDULER_INTERVAL: int = 60
    """Interval in seconds between scheduler ticks (default: 60 seconds)"""

    # Notification Dispatch Configuration
    NOTIFICATION_API_URL: str = "http://127.0.0.1:1801"
    """Base URL of the chat gateway that delivers fired reminders"""

    DISPATCH_CONCURRENCY: int = 5
    """Maximum number of deliveries in flight at once"""

    DISPATCH_TIMEOUT: float = 10.0
    """Seconds allowed for a single delivery before it counts as failed"""

    DISPATCH_MAX_ATTEMPTS: int = 3
    """Delivery attempts per fired reminder before it is dropped"""

    # Logging Configuration
    LOG_DIR: str = os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs")
    """Directory for the per-component rotating log files"""

    LOG_LEVEL: str = "INFO"
    """Level for engine loggers (DEBUG shows every scheduler iteration)"""

    LOG_MAX_BYTES: int = 10 * 1024 * 1024
    """Rotate a log file once it reaches this size"""

    LOG_BACKUP_COUNT: int = 5
    """Rotated files kept per log"""

    class Config:
        """Pydantic config"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
