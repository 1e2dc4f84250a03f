"""
Configuration management for Fleet Deployments.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

GIB = 1024 * 1024 * 1024


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = Field(default="Fleet Deployments")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./fleet_deployments.db")

    # Security
    secret_key: str = Field(
        default="your-secret-key-here",
        description="HMAC key used to sign links issued by file:// storage.",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Artifact generation
    max_image_size: int = Field(default=10 * GIB)
    image_generation_link_expire_seconds: int = Field(default=7 * 24 * 3600)
    upload_content_type: str = Field(default="application/octet-stream")
    generate_timeout_seconds: float = Field(default=300.0)

    # Object storage
    storage_uri: str = Field(
        default="file:///var/lib/fleet-deployments/artifacts",
        description="Where raw payloads live: file:///path or s3://bucket/prefix.",
    )
    storage_public_url: str = Field(
        default="http://localhost:8080",
        description="Base URL prefixed to links signed by file:// storage.",
    )
    aws_region: Optional[str] = Field(default=None)
    s3_endpoint_url: Optional[str] = Field(default=None)

    # Workflow engine
    workflows_url: str = Field(default="http://workflows-server:8080")
    workflows_timeout_seconds: float = Field(default=30.0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "DEPLOYMENTS_"


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
