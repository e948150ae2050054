"""Runtime settings read from the environment."""
import os
import tempfile
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    secrets_mode: str = "env"
    port_range_start: int = 8000
    container_port: int = 80
    operation_timeout: float = 900.0
    repos_path: str = os.path.join(tempfile.gettempdir(), "pypaas", "repos")
    image_prefix: str = "pypaas"
    stop_timeout: int = 10
    log_level: str = "INFO"
    strict_secrets: bool = False
    enable_rate_limit: bool = True
    webhook_rate_limit: str = "30/minute"

    @classmethod
    def from_env(cls, env_file: str = ".env") -> "Settings":
        """Read settings from the environment after loading ``env_file`` if present."""
        load_dotenv(env_file)
        defaults = cls()
        return cls(
            secrets_mode=os.getenv("SECRETS_MODE", defaults.secrets_mode),
            port_range_start=int(
                os.getenv("PORT_RANGE_START", defaults.port_range_start)
            ),
            container_port=int(os.getenv("CONTAINER_PORT", defaults.container_port)),
            operation_timeout=float(
                os.getenv("OPERATION_TIMEOUT", defaults.operation_timeout)
            ),
            repos_path=os.getenv("REPOS_PATH", defaults.repos_path),
            image_prefix=os.getenv("IMAGE_PREFIX", defaults.image_prefix),
            stop_timeout=int(os.getenv("STOP_TIMEOUT", defaults.stop_timeout)),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
            strict_secrets=_env_bool("STRICT_SECRETS"),
            enable_rate_limit=_env_bool("ENABLE_RATE_LIMIT", "true"),
            webhook_rate_limit=os.getenv(
                "WEBHOOK_RATE_LIMIT", defaults.webhook_rate_limit
            ),
        )


_settings: Optional[Settings] = None


def get_settings(reset: bool = False) -> Settings:
    global _settings
    if _settings is None or reset:
        _settings = Settings.from_env()
    return _settings
