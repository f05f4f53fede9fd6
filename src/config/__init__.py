"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="unibox-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Inbox web app URL, used to build thread links in escalations"
    )

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/unibox",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Monitor ==========
    sla_monitor_config_path: Path = Field(
        default=Path("sla_monitor.yaml"),
        description="Path to SLA monitor tuning YAML file"
    )
    sla_evaluation_interval: int = Field(
        default=60,
        description="Seconds between scheduled SLA evaluations (0 disables the scheduler)",
        ge=0
    )
    sla_monitor_request_timeout_seconds: float = Field(
        default=25.0,
        description="Upper bound for an HTTP-triggered monitor run",
        gt=0
    )
    escalation_state_backend: str = Field(
        default="database",
        description="Where last-escalated statuses live: 'database' or 'memory'"
    )

    # ========== Slack Integration ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for escalations"
    )
    slack_channel: str = Field(
        default="#support-alerts",
        description="Default Slack channel for escalations"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for Slack API calls",
        ge=0.1,
        le=30
    )

    # ========== Presentation layer ==========
    view_revalidate_url: Optional[str] = Field(
        default=None,
        description="Endpoint notified when a tenant's SLA settings view must refresh"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("escalation_state_backend")
    @classmethod
    def validate_state_backend(cls, v: str) -> str:
        allowed = {"database", "memory"}
        if v not in allowed:
            raise ValueError(f"escalation_state_backend must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class ThreadStatus(str):
    """Thread lifecycle statuses."""
    OPEN = "OPEN"
    PENDING = "PENDING"
    CLOSED = "CLOSED"


class MessageDirection(str):
    """Who sent a message."""
    INBOUND = "INBOUND"     # contact -> tenant
    OUTBOUND = "OUTBOUND"   # agent -> contact


class SLAState(str):
    """First-response SLA states."""
    OK = "ok"
    WARNING = "warning"
    BREACHED = "breached"


class Role(str):
    """Tenant membership roles."""
    VIEWER = "VIEWER"
    AGENT = "AGENT"
    ADMIN = "ADMIN"
    OWNER = "OWNER"


class PolicyScope(str):
    """Levels of the SLA policy hierarchy, most specific first."""
    LOCAL = "local"         # a single physical location/branch
    CHANNEL = "channel"     # a channel type, e.g. WHATSAPP
    TENANT = "tenant"       # the tenant default (oldest policy)


class NotificationType(str):
    """In-app notification types raised by the SLA monitor."""
    SLA_WARNING = "sla_warning"
    SLA_EXPIRED = "sla_expired"


# ========== Lists for validation ==========

OPEN_THREAD_STATUSES = [ThreadStatus.OPEN, ThreadStatus.PENDING]


ROLE_HIERARCHY = {
    Role.VIEWER: 1,
    Role.AGENT: 2,
    Role.ADMIN: 3,
    Role.OWNER: 4,
}

# Severity order used for escalation decisions
SLA_STATE_SEVERITY = {
    SLAState.OK: 0,
    SLAState.WARNING: 1,
    SLAState.BREACHED: 2,
}

# ========== SLA policy constants ==========

WARNING_RATIO = 0.2                           # warn when < 20% of the deadline remains
DISPLAY_DEFAULT_FIRST_RESPONSE_MINUTES = 60   # badge fallback only, never used to escalate
MIN_POLICY_NAME_LENGTH = 2
MAX_POLICY_NAME_LENGTH = 100
MAX_FIRST_RESPONSE_MINUTES = 10080            # 7 days
MAX_SCOPE_KEY_LENGTH = 100
