"""Application settings loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from updatectl.utils.sizes import parse_size_threshold

WEAK_SECRET_LENGTH = 32
WEBHOOK_CONTAINER_MARKER = "updatectl_webhook"


class Settings(BaseSettings):
    """All configuration is driven by environment variables.

    Built once at process start and handed to every component's constructor;
    nothing else in the package reads the environment.
    """

    # Fleet
    update_servers: str = ""
    update_ssh_key: str = ""
    update_local_name: str = "localhost"
    update_local_display: str = "local"

    # Timeouts (seconds)
    ssh_connect_timeout_seconds: float = 30
    command_timeout_seconds: float = 300
    local_command_timeout_seconds: float = 120
    docker_timeout_seconds: float = 60
    http_timeout_seconds: float = 30

    # Retry
    retry_max_attempts: int = 3
    retry_initial_delay_ms: int = 100
    retry_max_delay_ms: int = 30_000

    # Webhook
    updatectl_webhook_secret: str = ""
    updatectl_webhook_url: str = ""
    updatectl_webhook_port: int = 8080

    # Container restarts after docker pulls
    updatectl_restart_policy: str = "all-except-webhook"
    updatectl_restart_exclude_default: str = ""
    updatectl_restart_exclude: str = ""

    # Cleanup thresholds
    dockermon_cleanup_stopped_age_days: int = 30
    dockermon_cleanup_log_size_container: str = "100M"

    # Notifications
    gotify_url: str = "http://localhost:8080/message"
    gotify_key_file: str = ""
    updatectl_gotify_key: str = ""
    ntfy_url: str = "https://ntfy.sh"
    updatectl_ntfy_topic: str = ""
    ntfy_auth: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = Field(default=False)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("dockermon_cleanup_log_size_container")
    @classmethod
    def _check_log_size(cls, value: str) -> str:
        parse_size_threshold(value)
        return value

    # ── derived values ────────────────────────────────────────────────

    @property
    def ssh_key_path(self) -> Optional[str]:
        return self.update_ssh_key or None

    @property
    def log_size_threshold_bytes(self) -> int:
        return parse_size_threshold(self.dockermon_cleanup_log_size_container)

    @property
    def webhook_secret_is_weak(self) -> bool:
        return 0 < len(self.updatectl_webhook_secret) < WEAK_SECRET_LENGTH

    def restart_exclusions(self, server_name: str) -> list[str]:
        """Container-name substrings that must not be restarted on *server_name*.

        Defaults apply everywhere; ``server:container`` pairs only apply to
        the named server (compared case-insensitively).
        """
        excluded = [
            s.strip()
            for s in self.updatectl_restart_exclude_default.split(",")
            if s.strip()
        ]
        for pair in self.updatectl_restart_exclude.split(","):
            server, sep, container = pair.strip().partition(":")
            if not sep:
                continue
            if server.strip().lower() == server_name.lower() and container.strip():
                excluded.append(container.strip())
        return excluded

    def gotify_token(self) -> Optional[str]:
        """Key file wins over the inline key."""
        if self.gotify_key_file:
            path = Path(self.gotify_key_file)
            if path.is_file():
                token = path.read_text(encoding="utf-8").strip()
                if token:
                    return token
        return self.updatectl_gotify_key or None


# Singleton – import this from anywhere
settings = Settings()
