# rest2sftp/core/config.py - Server configuration loaded from the environment

import os
import logging
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ServerConfig(BaseModel):
    """Immutable configuration snapshot, built once at startup."""
    model_config = ConfigDict(frozen=True)

    # --- Remote (SFTP) side ---
    sftp_server_address: str = Field("localhost", description="Remote SSH host.")
    sftp_server_port: int = Field(22, ge=1, le=65535, description="Remote SSH port.")
    sftp_user_name: str = Field("", description="Remote username.")
    sftp_user_password: str = Field("", repr=False, description="Remote password.")
    sftp_dial_timeout: float = Field(60.0, gt=0, description="Seconds allowed for session establishment.")
    sftp_known_hosts: Optional[str] = Field(None, description="known_hosts file; host keys are auto-accepted when unset.")
    sftp_session_mode: Literal["per_request", "pooled"] = "per_request"
    sftp_pool_size: int = Field(4, ge=1, description="Maximum sessions held by the pool.")
    sftp_pool_timeout: float = Field(30.0, gt=0, description="Seconds to wait for a pooled session.")
    sftp_verify_on_startup: bool = False

    # --- HTTP side ---
    rest_base_path: str = Field("", description="Prefix stripped from request paths.")
    rest_base_path_anchored: bool = True
    rest_host: str = "0.0.0.0"
    rest_port: int = Field(8000, ge=1, le=65535)
    rest_legacy_errors: bool = False

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value!r}")
        return level

    @property
    def sftp_address(self) -> str:
        return f"{self.sftp_server_address}:{self.sftp_server_port}"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean, got {raw!r}")


def load_config(env_file: str | None = None) -> ServerConfig:
    """
    Reads the server configuration from environment variables.

    A `.env` file (or `env_file` when given) is loaded first; variables already
    present in the environment win.

    Raises:
        ValueError / pydantic.ValidationError: If a value is malformed.
    """
    load_dotenv(env_file)

    values = {
        "sftp_server_address": os.getenv("SFTP_SERVER_ADDRESS", "localhost"),
        "sftp_server_port": os.getenv("SFTP_SERVER_PORT", "22"),
        "sftp_user_name": os.getenv("SFTP_USER_NAME", ""),
        "sftp_user_password": os.getenv("SFTP_USER_PASSWORD", ""),
        "sftp_dial_timeout": os.getenv("SFTP_DIAL_TIMEOUT", "60"),
        "sftp_known_hosts": os.getenv("SFTP_KNOWN_HOSTS") or None,
        "sftp_session_mode": os.getenv("SFTP_SESSION_MODE", "per_request"),
        "sftp_pool_size": os.getenv("SFTP_POOL_SIZE", "4"),
        "sftp_pool_timeout": os.getenv("SFTP_POOL_TIMEOUT", "30"),
        "sftp_verify_on_startup": _env_bool("SFTP_VERIFY_ON_STARTUP", False),
        "rest_base_path": os.getenv("REST_BASE_PATH", ""),
        "rest_base_path_anchored": _env_bool("REST_BASE_PATH_ANCHORED", True),
        "rest_host": os.getenv("REST_HOST", "0.0.0.0"),
        "rest_port": os.getenv("REST_PORT", "8000"),
        "rest_legacy_errors": _env_bool("REST_LEGACY_ERRORS", False),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
    }
    config = ServerConfig(**values)
    logger.info(f"Configuration loaded: sftp={config.sftp_address}, base path='{config.rest_base_path}', mode={config.sftp_session_mode}")
    return config
