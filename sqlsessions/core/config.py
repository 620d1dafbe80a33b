"""
Application configuration using Pydantic Settings.

Configuration values can be set via environment variables or .env file.
The session store itself takes explicit constructor arguments; these settings
drive the demo application and the maintenance scripts.
"""

from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = "sqlsessions"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8080

    # Backing store
    database_url: str = "sqlite:///./sessions.db"
    session_table: str = "sessions"

    # Session cookie defaults
    session_name: str = "demo-session"
    session_max_age: int = 86400 * 30
    cookie_secure: bool = False
    cookie_http_only: bool = True

    # Comma-separated key pairs, newest first. Each entry is either
    # "hash_key" or "hash_key:block_key".
    secret_keys: str = ""
    kdf_iterations: Optional[int] = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    def key_pairs(self) -> List[bytes]:
        """
        Flatten ``secret_keys`` into (hash_key, block_key) pairs.

        Entries without a block key yield an empty block key so pairs keep
        their positions.
        """
        keys: List[bytes] = []
        for entry in self.secret_keys.split(","):
            entry = entry.strip()
            if not entry:
                continue
            hash_key, _, block_key = entry.partition(":")
            keys.append(hash_key.encode("utf-8"))
            keys.append(block_key.encode("utf-8"))
        return keys


# Global settings instance
settings = Settings()
