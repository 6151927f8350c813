"""Connection and credential settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConnectionSettings(BaseSettings):
    """Where the autoscaler's collaborators live and how to authenticate.

    Only the entry script loads these; collaborators receive the values
    through their constructors.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTOSCALER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Management plane
    subscription_id: str = Field(default="", description="Subscription that owns the server")
    resource_group: str = Field(default="", description="Resource group of the server")
    arm_endpoint: str = Field(default="https://management.azure.com", description="Management API base URL")
    arm_api_version: str = Field(default="2021-11-01", description="Management API version")

    # Service principal; when absent, ``access_token`` is used as-is
    tenant_id: Optional[str] = Field(default=None, description="Directory (tenant) ID")
    client_id: Optional[str] = Field(default=None, description="Service principal client ID")
    client_secret: Optional[str] = Field(default=None, description="Service principal secret")
    access_token: Optional[str] = Field(default=None, description="Pre-issued bearer token")

    # Databases (SQLAlchemy async URLs)
    master_database_url: str = Field(default="", description="Server master database")
    pool_database_url: str = Field(
        default="",
        description="Template URL for a pool database; {database} is replaced with its name",
    )
    monitor_database_url: Optional[str] = Field(default=None, description="Audit table database")

    # Error forwarding
    error_redis_url: Optional[str] = Field(default=None, description="Redis URL for the error stream")
    error_stream: str = Field(default="autoscaler-errors", description="Error stream name")

    request_timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout")
