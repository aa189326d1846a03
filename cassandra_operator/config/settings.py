"""
Operator configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import Optional

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main operator settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Cassandra Operator", description="Application name")
    app_version: str = Field(default="0.4.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/staging/testing/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    # Health API server
    host: str = Field(default="0.0.0.0", description="Health API host")
    port: int = Field(default=8080, ge=1, le=65535, description="Health API port")

    # Kubernetes
    kubeconfig_path: Optional[str] = Field(
        default=None, description="Path to kubeconfig file (None for default loading rules)"
    )
    k8s_in_cluster: bool = Field(default=False, description="Running inside Kubernetes cluster")
    watch_namespace: Optional[str] = Field(
        default=None, description="Namespace to watch (None for all namespaces)"
    )
    crd_group: str = Field(default="db.orange.com", description="CassandraCluster API group")
    crd_version: str = Field(default="v1alpha2", description="CassandraCluster API version")
    crd_plural: str = Field(default="cassandraclusters", description="CassandraCluster plural name")

    # Jolokia management side-channel
    jolokia_port: int = Field(default=8778, ge=1, le=65535, description="Jolokia agent port on Cassandra pods")
    jolokia_timeout_seconds: float = Field(
        default=5.0, gt=0, le=120, description="Timeout of a single Jolokia request"
    )
    jolokia_command_timeout_seconds: float = Field(
        default=15.0, gt=0, le=600, description="Timeout of the decommission exec request"
    )
    cluster_domain: str = Field(
        default="", description="Optional DNS suffix appended to pod FQDNs (e.g. svc.cluster.local)"
    )

    # Reconciler
    reconcile_interval: float = Field(default=2.0, gt=0, le=60, description="Worker tick in seconds")
    requeue_after_seconds: float = Field(
        default=10.0, gt=0, le=600, description="Requeue delay while a scale-down is in progress"
    )
    error_requeue_after_seconds: float = Field(
        default=5.0, gt=0, le=600, description="Requeue delay after a transient error"
    )
    resync_interval_seconds: float = Field(
        default=60.0, gt=0, le=3600, description="Periodic resync of stable clusters"
    )
    max_error_backoff_seconds: float = Field(
        default=300.0, gt=0, le=3600, description="Upper bound of the backoff for repeatedly failing clusters"
    )
    decommission_resend_seconds: float = Field(
        default=120.0, ge=0, le=3600, description="Window during which a decommission command is not re-sent"
    )

    # Leader election
    leader_election_enabled: bool = Field(default=False, description="Elect a single active replica via Redis")
    redis_url: RedisDsn = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    redis_max_connections: int = Field(default=10, ge=1, le=100, description="Redis max connections")
    leader_lease_seconds: int = Field(default=30, ge=5, le=600, description="Leadership lease duration")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = ["development", "staging", "testing", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == "development"


# Global settings instance
settings = Settings()
