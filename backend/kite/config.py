from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    model_config = SettingsConfigDict(env_file=(".env",), env_file_encoding="utf-8", extra="ignore")

    app_env: Literal["development", "production", "test"] = "development"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_json: bool = False
    log_file: str | None = None
    allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    # Cluster connection
    kubeconfig: str | None = Field(default=None, description="Path to a kubeconfig file; in-cluster config is used when unset")
    kube_context: str | None = None
    # List read-cache in front of the API server
    disable_cache: bool = False
    cache_ttl_seconds: int = 5
    rate_limit_requests_per_minute: int = Field(default=1200, description="0 disables client-side rate limiting")
    # Per-request deadlines
    request_timeout_seconds: float = 30.0
    batch_timeout_seconds: float = 120.0
    scale_restart_timeout_seconds: float = 300.0
    # Node maintenance pods
    node_operation_image: str | None = None
    node_terminal_image: str | None = None
    node_operation_namespace: str = "kube-system"

    @computed_field
    @property
    def is_debug(self) -> bool:
        return self.app_env == "development"

    @property
    def operation_image(self) -> str:
        # alpine ships nsenter
        return self.node_operation_image or self.node_terminal_image or "alpine:latest"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
