from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # HTTP status server
    host: str = "localhost"
    port: int = 3000

    # Logging
    log_level: str = "INFO"
    log_format: str = "<%s>\t%s"  # severity, message

    # Probe execution
    shell_path: str = "/bin/sh"  # any Bourne-compatible shell
    http_timeout: float = 10.0  # seconds, per attempt
    max_redirects: int = 10

    # Notifications
    sendmail_path: str = "/usr/sbin/sendmail"


settings = Settings()
