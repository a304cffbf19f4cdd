# app/core/config.py
"""
Multi-environment configuration with a single env directory (config/env).
- Loads {ENV_DIR}/.env.{ENVIRONMENT} or fallback to {ENV_DIR}/.env
- Ignores unknown keys from env-files (extra='ignore') so shared .env works
- Tolerant list parser for CORS_ORIGINS and PARTICIPANT_COLORS: "*", CSV, or JSON array
"""

import os
import json
from enum import Enum
from typing import Annotated, Optional, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Environment(str, Enum):
    LOCAL = "local"
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class SessionBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class ColorPolicy(str, Enum):
    ROUND_ROBIN = "round_robin"
    LEAST_USED = "least_used"


DEFAULT_PARTICIPANT_COLORS = [
    "#3b82f6",  # blue
    "#ef4444",  # red
    "#22c55e",  # green
    "#f59e0b",  # yellow
    "#8b5cf6",  # purple
    "#06b6d4",  # cyan
    "#f97316",  # orange
    "#ec4899",  # pink
]


def _compute_env_file() -> Optional[str]:
    """
    Pick env file based on ENVIRONMENT and ENV_DIR.
    Order:
      1) {ENV_DIR}/.env.{ENVIRONMENT}
      2) {ENV_DIR}/.env
    """
    env = os.getenv("ENVIRONMENT", "local").lower()
    env_dir = os.getenv("ENV_DIR", "config/env")
    candidates = [
        os.path.join(env_dir, f".env.{env}"),
        os.path.join(env_dir, ".env"),
    ]
    for path in candidates:
        if os.path.exists(path):
            return path
    return None


def _parse_list(v, default: List[str]) -> List[str]:
    if v is None or v == "":
        return list(default)
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        s = v.strip()
        if s == "*" or s == '"*"':
            return ["*"]
        if s.startswith("["):
            try:
                parsed = json.loads(s)
                if isinstance(parsed, list):
                    return parsed
            except ValueError:
                pass
        return [x.strip() for x in s.split(",") if x.strip()]
    return v


class Settings(BaseSettings):
    # extra='ignore': unknown keys from a shared .env do not break validation.
    # env_ignore_empty=True: empty values do not break parsing of complex fields.
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_ignore_empty=True,
        extra="ignore",
    )

    # Environment
    ENVIRONMENT: Environment = Field(default=Environment.LOCAL)
    VERSION: str = Field(default="1.0.0")

    # Session store
    SESSION_BACKEND: SessionBackend = Field(default=SessionBackend.MEMORY)
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # Security
    JWT_SECRET: str = Field(default="local_secret_key_for_development_only")
    JWT_ALG: str = Field(default="HS256")

    # Collaboration policy
    DEFAULT_JOIN_PERMISSION: str = Field(default="write")
    PARTICIPANT_COLORS: Annotated[List[str], NoDecode] = Field(default_factory=lambda: list(DEFAULT_PARTICIPANT_COLORS))
    COLOR_ASSIGNMENT_POLICY: ColorPolicy = Field(default=ColorPolicy.ROUND_ROBIN)
    CHAT_MAX_MESSAGE_LENGTH: int = Field(default=2000)
    SESSION_EVENT_HISTORY_LIMIT: int = Field(default=500)

    # Idle-session reaping
    SESSION_IDLE_TIMEOUT_SECONDS: int = Field(default=3600)
    SESSION_REAP_INTERVAL_SECONDS: int = Field(default=3600)
    REAP_SKIP_ACTIVE_SESSIONS: bool = Field(default=False)

    # WebSocket relay
    WS_PING_INTERVAL: int = Field(default=30)
    WS_PONG_TIMEOUT: int = Field(default=10)
    WS_MAX_MESSAGE_SIZE: int = Field(default=1048576)
    WS_MAX_QUEUE_SIZE: int = Field(default=256)

    # Code execution
    EXECUTION_TIMEOUT_SECONDS: float = Field(default=10.0)
    PYTHON_INTERPRETER: str = Field(default="python3")
    NODE_INTERPRETER: str = Field(default="node")
    MAX_CONCURRENT_EXECUTIONS: int = Field(default=4)

    # Generative language API
    GEMINI_API_KEY: Optional[str] = Field(default=None)
    GEMINI_MODEL: str = Field(default="gemini-1.5-flash")
    GEMINI_BASE_URL: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    AI_REQUEST_TIMEOUT_SECONDS: float = Field(default=30.0)

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["*"])

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """
        Accept:
          - "*"  -> ["*"]
          - "http://a, http://b" -> ["http://a", "http://b"]
          - '["http://a","http://b"]' (JSON) -> as-is
        """
        return _parse_list(v, ["*"])

    @field_validator("PARTICIPANT_COLORS", mode="before")
    @classmethod
    def _parse_participant_colors(cls, v):
        return _parse_list(v, DEFAULT_PARTICIPANT_COLORS)

    @field_validator("PARTICIPANT_COLORS")
    @classmethod
    def _require_palette(cls, v):
        if not v:
            raise ValueError("PARTICIPANT_COLORS must contain at least one color")
        return v

    @field_validator("DEFAULT_JOIN_PERMISSION")
    @classmethod
    def _check_join_permission(cls, v):
        if v not in ("read", "write"):
            raise ValueError("DEFAULT_JOIN_PERMISSION must be 'read' or 'write'")
        return v


class LocalConfig(Settings):
    ENVIRONMENT: Environment = Environment.LOCAL


class DevConfig(Settings):
    ENVIRONMENT: Environment = Environment.DEV
    SESSION_REAP_INTERVAL_SECONDS: int = 600


class StagingConfig(Settings):
    ENVIRONMENT: Environment = Environment.STAGING
    SESSION_BACKEND: SessionBackend = SessionBackend.REDIS
    MAX_CONCURRENT_EXECUTIONS: int = 8


class ProdConfig(Settings):
    ENVIRONMENT: Environment = Environment.PROD
    SESSION_BACKEND: SessionBackend = SessionBackend.REDIS
    MAX_CONCURRENT_EXECUTIONS: int = 16
    SESSION_EVENT_HISTORY_LIMIT: int = 200


def get_settings() -> Settings:
    env = os.getenv("ENVIRONMENT", "local").lower()
    configs = {
        "local": LocalConfig,
        "dev": DevConfig,
        "staging": StagingConfig,
        "prod": ProdConfig,
    }
    config_class = configs.get(env, LocalConfig)
    env_file = _compute_env_file()
    if env_file:
        return config_class(_env_file=env_file, _env_file_encoding="utf-8")
    return config_class()


# Global settings instance
settings = get_settings()
