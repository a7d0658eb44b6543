"""Connection settings for the churn store (``CHURNFLOW_DB_*``)."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """PostgreSQL holding churn records and the owner roster."""

    model_config = SettingsConfigDict(
        env_prefix="CHURNFLOW_DB_",
        env_file=".env",
        extra="ignore",
    )

    enabled: bool = Field(default=True, description="Off runs the API without a store (health reports degraded)")
    host: str = "localhost"
    port: int = 5432
    database: str = "churnflow"
    user: str = "churnflow"
    password: str = ""
    min_pool_size: int = Field(default=2, ge=1)
    max_pool_size: int = Field(default=10, ge=1)
    connect_timeout: float = Field(default=10.0, description="Seconds to wait for a connection")
    command_timeout: float = Field(default=30.0, description="Seconds before a query is cancelled")
    run_migrations: bool = Field(default=True, description="Apply pending SQL files when the pool opens")


db_settings = DatabaseConfig()
