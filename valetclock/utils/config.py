"""
Configuration management with schema validation.
Single source of truth for Valet Clock settings.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigError

# Load environment variables
load_dotenv()

DATA_DIR = Path("data")
SETTINGS_FILE = DATA_DIR / "settings.yaml"


class AppSettings(BaseModel):
    name: str = "Valet Clock"
    version: str = "1.0.0"
    environment: str = "development"


class AuthSettings(BaseModel):
    status_poll_interval_seconds: float = Field(default=30.0, gt=0)
    session_expiry_hours: int = Field(default=24, ge=1)
    # Ended sessions wait this long for their notice to be shown before being dropped
    ended_session_ttl_seconds: float = Field(default=3600, ge=0)
    session_cookie_name: str = "valet_session"


class StoreSettings(BaseModel):
    backend: str = "json"  # json or memory
    data_dir: str = "data"

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        if v not in ("json", "memory"):
            raise ValueError("store.backend must be 'json' or 'memory'")
        return v


class CredentialSettings(BaseModel):
    provider: str = "local"  # local or firebase
    firebase_api_key: Optional[str] = None
    request_timeout_seconds: int = 30
    max_failed_attempts: int = 5
    lockout_seconds: int = 300
    min_password_length: int = 6

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        if v not in ("local", "firebase"):
            raise ValueError("credentials.provider must be 'local' or 'firebase'")
        return v


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file_path: Optional[str] = "logs/valetclock.log"
    max_bytes: int = 10485760
    backup_count: int = 5


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class ConfigManager:
    """Loads settings.yaml, substituting ${VAR:default} from the environment"""

    def __init__(self, settings_path: Optional[Path] = None):
        env_path = os.getenv("VALETCLOCK_SETTINGS_FILE")
        self.settings_path = Path(settings_path or env_path or SETTINGS_FILE)
        self._settings: Optional[Settings] = None

    def _substitute_env_vars(self, value: Any) -> Any:
        """Recursively substitute environment variables"""
        if isinstance(value, str):
            if value.startswith("${") and value.endswith("}"):
                var_expr = value[2:-1]
                if ":" in var_expr:
                    var_name, default = var_expr.split(":", 1)
                    return os.getenv(var_name.strip(), default.strip()) or None
                else:
                    return os.getenv(var_expr, value)
        elif isinstance(value, dict):
            return {k: self._substitute_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._substitute_env_vars(item) for item in value]
        return value

    def load_settings(self) -> Settings:
        """Load and validate settings; defaults apply when the file is absent"""
        if not self.settings_path.exists():
            self._settings = Settings()
            return self._settings

        try:
            with open(self.settings_path, "r", encoding="utf-8") as f:
                raw_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read settings from {self.settings_path}: {e}")

        processed_data = self._substitute_env_vars(raw_data)
        try:
            self._settings = Settings(**processed_data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {self.settings_path}: {e}")
        return self._settings

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            return self.load_settings()
        return self._settings
