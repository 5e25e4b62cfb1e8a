"""Planning configuration loaded from environment variables.

Store credentials, table names and the notification window length.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class PlanningConfig(BaseSettings):
    """Planning configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Supabase (PostgREST) store
    supabase_url: str = Field(
        default="",
        description="Supabase project URL",
    )
    supabase_key: str = Field(
        default="",
        description="Supabase anon or service-role key",
    )

    # Tables
    template_table: str = Field(
        default="schedule_templates",
        description="Recurring template slots",
    )
    exception_table: str = Field(
        default="rcp_exceptions",
        description="Per-occurrence overrides (cancel / reschedule / substitute)",
    )
    attendance_table: str = Field(
        default="rcp_attendance",
        description="Per-occurrence, per-doctor attendance decisions",
    )
    rcp_table: str = Field(
        default="rcp_definitions",
        description="RCP meeting definitions",
    )
    manual_instance_table: str = Field(
        default="rcp_manual_instances",
        description="Dated instances of MANUAL RCP definitions",
    )
    doctor_table: str = Field(
        default="doctors",
        description="Doctor directory",
    )

    # Retry policy for transient store failures
    store_retry_attempts: int = Field(
        default=3,
        description="Attempts per store call before StoreUnavailable is raised",
    )
    store_retry_wait_seconds: float = Field(
        default=1.0,
        description="Fixed wait between store call attempts",
    )

    # Notifications
    notification_weeks: int = Field(
        default=2,
        description="Number of weeks (from Monday of today) counted for pending RCP decisions",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Singleton pattern
_config: PlanningConfig | None = None


def get_config() -> PlanningConfig:
    """Get the planning configuration singleton.

    Returns:
        PlanningConfig: Planning configuration instance
    """
    global _config
    if _config is None:
        _config = PlanningConfig()
    return _config
