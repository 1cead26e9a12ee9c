"""Configuration management with Pydantic Settings.

Environment variables are loaded from:
1. Environment variables (highest priority)
2. .env file (development)
3. Defaults (lowest priority)

The resolved ``home_dir`` is handed explicitly to the metadata repository,
the secret store and the provisioning engine; nothing below reads the user's
home directory on its own.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging level."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Logging format."""

    JSON = "json"
    TEXT = "text"


class HetznerSettings(BaseSettings):
    """Hetzner Cloud configuration."""

    model_config = SettingsConfigDict(env_prefix="HCLOUD_")

    api_url: str = Field(
        default="https://api.hetzner.cloud/v1",
        description="Hetzner Cloud API base URL",
    )
    server_type: str = Field(default="cx33", description="Server type for every node")
    image: str = Field(default="ubuntu-22.04", description="Server image")
    validation_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for the token validation request",
    )


class K3sSettings(BaseSettings):
    """k3s distribution settings used in node cloud-init."""

    model_config = SettingsConfigDict(env_prefix="K3S_")

    version: str = Field(default="v1.28.5+k3s1", description="k3s release to install")
    api_port: int = Field(default=6443, description="Kubernetes API server port")
    flannel_backend: str = Field(default="wireguard-native", description="Flannel backend")
    kubeconfig_path: str = Field(
        default="/etc/rancher/k3s/k3s.yaml",
        description="Admin kubeconfig path on server nodes",
    )


class SSHSettings(BaseSettings):
    """SSH access to cluster nodes."""

    model_config = SettingsConfigDict(env_prefix="SSH_")

    user: str = Field(default="kubeforge-admin", description="Admin user created by cloud-init")
    port: int = Field(default=22, description="SSH port")
    connect_timeout_seconds: float = Field(default=10.0, description="Connect timeout")


class SecretStoreSettings(BaseSettings):
    """Passphrase key-derivation parameters (scrypt)."""

    model_config = SettingsConfigDict(env_prefix="SECRETS_")

    kdf_n: int = Field(default=2**15, description="scrypt CPU/memory cost")
    kdf_r: int = Field(default=8, description="scrypt block size")
    kdf_p: int = Field(default=1, description="scrypt parallelization")

    @field_validator("kdf_n")
    @classmethod
    def validate_kdf_n(cls, v: int) -> int:
        """scrypt requires a power of two greater than one."""
        if v < 2 or v & (v - 1):
            raise ValueError("kdf_n must be a power of two greater than 1")
        return v


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use the appropriate prefix (e.g., HCLOUD_SERVER_TYPE).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application metadata
    app_name: str = Field(default="kubeforge", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        alias="ENV",
        description="Deployment environment",
    )

    # Logging configuration
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: LogFormat = Field(default=LogFormat.TEXT, description="Logging format")

    # Local state
    home_dir: Path = Field(
        default_factory=lambda: Path.home() / ".kubeforge",
        alias="KUBEFORGE_HOME",
        description="Base directory for metadata, secrets and engine state",
    )
    pulumi_backend_url: str | None = Field(
        default=None,
        alias="PULUMI_BACKEND_URL",
        description="Pulumi state backend (defaults to a file backend under home_dir)",
    )

    # Server configuration
    host: str = Field(default="127.0.0.1", description="Server bind host")
    port: int = Field(default=8080, description="Server bind port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Nested settings
    hetzner: HetznerSettings = Field(default_factory=HetznerSettings)
    k3s: K3sSettings = Field(default_factory=K3sSettings)
    ssh: SSHSettings = Field(default_factory=SSHSettings)
    secrets: SecretStoreSettings = Field(default_factory=SecretStoreSettings)

    @field_validator("home_dir")
    @classmethod
    def expand_home_dir(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @property
    def providers_dir(self) -> Path:
        return self.home_dir / "providers"

    @property
    def clusters_dir(self) -> Path:
        return self.home_dir / "clusters"

    @property
    def secrets_dir(self) -> Path:
        return self.home_dir / "secrets"

    @property
    def state_dir(self) -> Path:
        return self.home_dir / "state"

    @property
    def backend_url(self) -> str:
        """Pulumi backend URL, falling back to local file state."""
        return self.pulumi_backend_url or f"file://{self.state_dir}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses LRU cache to avoid re-parsing environment variables.
    """
    return Settings()
