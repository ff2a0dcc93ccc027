"""Configuration management for the clone controller."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import APISERVER_PUBLIC_KEY_PATH, CLONE_TOKEN_ISSUER, CLONE_TOKEN_LEEWAY_SECONDS


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Settings
    service_name: str = "clone-controller"
    version: str = "0.1.0"
    log_level: str = "INFO"

    # Kubernetes Settings
    kubeconfig_path: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file; in-cluster config is used when unset",
    )
    kube_context: Optional[str] = None

    # Cloner Pod Settings
    clone_image: str = "kubevirt/cdi-cloner:latest"
    pull_policy: str = Field(default="IfNotPresent", description="Always, IfNotPresent, Never")
    verbose: str = "1"

    # Token Settings
    apiserver_public_key_path: str = APISERVER_PUBLIC_KEY_PATH
    clone_token_issuer: str = CLONE_TOKEN_ISSUER
    clone_token_leeway_seconds: int = CLONE_TOKEN_LEEWAY_SECONDS

    # Reconciliation Settings
    threadiness: int = Field(default=3, ge=1)
    expectations_timeout_seconds: float = 300.0
    cache_sync_timeout_seconds: float = 60.0
    watch_timeout_seconds: int = 300
    informer_stop_timeout_seconds: float = 5.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
