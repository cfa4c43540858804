"""Studio configuration loaded from environment variables."""

from decimal import Decimal
from zoneinfo import ZoneInfo

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class StudioConfig(BaseSettings):
    """Studio configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # Local clock
    timezone: str = Field(
        default="Asia/Taipei",
        description="IANA zone used for 'now' and 'today' (booking window, history)",
    )

    # Booking policy
    booking_open_days_before: int = Field(
        default=2,
        ge=0,
        description="Calendar days before the class date when student booking opens",
    )
    booking_open_hour: int = Field(
        default=9,
        ge=0,
        le=23,
        description="Local hour at which the booking window opens",
    )
    default_points_cost: Decimal = Field(
        default=Decimal("1"),
        ge=0,
        description="Credits charged per class when a template sets none",
    )
    default_capacity: int = Field(
        default=20,
        gt=0,
        description="Capacity used when a template omits one",
    )
    default_hourly_rate: int = Field(
        default=800,
        ge=0,
        description="Instructor hourly rate used when neither caller nor instructor sets one",
    )

    # Store behaviour
    transaction_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Commit attempts before a transaction is reported as aborted",
    )
    transaction_retry_wait_seconds: float = Field(
        default=0.01,
        ge=0,
        description="Maximum random wait between transaction attempts",
    )
    batch_max_operations: int = Field(
        default=400,
        gt=0,
        description="Maximum writes per atomic batch",
    )

    # Identifiers
    class_id_prefix: str = Field(default="class")
    instructor_id_prefix: str = Field(default="instructor")
    student_id_prefix: str = Field(default="student")

    # Authorization
    admin_ids: str = Field(
        default="",
        description="Comma-separated user ids always resolved as ADMIN",
    )

    # Notifications
    notify_webhook_url: str = Field(
        default="",
        description="Webhook for SMS/notification dispatch; empty logs messages only",
    )
    notify_timeout_seconds: float = Field(default=10, gt=0)

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

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        ZoneInfo(value)
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def admin_id_set(self) -> frozenset[str]:
        return frozenset(part.strip() for part in self.admin_ids.split(",") if part.strip())


# Singleton pattern
_config: StudioConfig | None = None


def get_config() -> StudioConfig:
    """Get the studio configuration singleton.

    Returns:
        StudioConfig: Studio configuration instance
    """
    global _config
    if _config is None:
        _config = StudioConfig()
    return _config
