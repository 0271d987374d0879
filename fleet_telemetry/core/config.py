# fleet_telemetry/core/config.py
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global application settings.

    Read from the environment / .env file. The code mostly uses the derived
    properties:
    - settings.database_url
    - settings.MQTT_* (connection of the telemetry broker)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Fleet Telemetry"
    LOG_LEVEL: str = "INFO"

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------
    fleet_db_host: str = "localhost"
    fleet_db_port: int = 5432
    fleet_db_user: str = "fleet"
    fleet_db_password: str = "fleet123"
    fleet_db_name: str = "fleet_db"

    DATABASE_URL: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL",
    )

    # ------------------------------------------------------------------
    # Compliance hours / local day
    # ------------------------------------------------------------------
    DEFAULT_TIMEZONE: str = "Asia/Manila"
    TARGET_HOURS: float = 8.0

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------
    SCHEDULER_ENABLED: bool = True
    HOURS_TICK_SECONDS: int = 30
    ARCHIVE_INTERVAL_MINUTES: int = 5
    # how far back (UTC days) archival looks for sessions not yet folded
    ARCHIVE_LOOKBACK_DAYS: int = 2
    ROLLUP_INTERVAL_MINUTES: int = 10
    ROLLUP_WINDOW_DAYS: int = 7

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    INGEST_MAX_RETRIES: int = 3
    INGEST_RETRY_BACKOFF_SECONDS: float = 0.05

    # ------------------------------------------------------------------
    # MQTT (device telemetry)
    # ------------------------------------------------------------------
    fleet_mqtt_enabled: bool = False
    fleet_mqtt_host: str = "localhost"
    fleet_mqtt_port: int = 1883
    fleet_mqtt_topic: str = "fleet/vehicles/#"
    fleet_mqtt_username: Optional[str] = None
    fleet_mqtt_password: Optional[str] = None

    SLOT_OFFLINE_THRESHOLD_SECONDS: int = 120

    # ==================================================================
    # Derived properties
    # ==================================================================

    @property
    def database_url(self) -> str:
        """
        Async database URL for SQLAlchemy.

        Priority:
        1) DATABASE_URL when set
        2) built from fleet_db_* with the +asyncpg driver
        """
        url = self.DATABASE_URL
        if not url:
            url = (
                f"postgresql+asyncpg://"
                f"{self.fleet_db_user}:{self.fleet_db_password}"
                f"@{self.fleet_db_host}:{self.fleet_db_port}/{self.fleet_db_name}"
            )

        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)

        return url

    @property
    def MQTT_ENABLED(self) -> bool:
        return self.fleet_mqtt_enabled

    @property
    def MQTT_HOST(self) -> str:
        return self.fleet_mqtt_host

    @property
    def MQTT_PORT(self) -> int:
        return self.fleet_mqtt_port

    @property
    def MQTT_TOPIC(self) -> str:
        return self.fleet_mqtt_topic

    @property
    def MQTT_USERNAME(self) -> Optional[str]:
        return self.fleet_mqtt_username

    @property
    def MQTT_PASSWORD(self) -> Optional[str]:
        return self.fleet_mqtt_password

    @property
    def MQTT_TOPIC_PREFIX(self) -> str:
        """
        Prefix derived from the subscription topic:

        fleet/vehicles/#  -> fleet/vehicles
        """
        topic = self.fleet_mqtt_topic
        if topic.endswith("/#"):
            return topic[:-2]
        return topic


settings = Settings()
