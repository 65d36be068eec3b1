"""Configuration management for the swap tool."""

from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ADAPTOR_SWAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Identity
    private_key: Optional[SecretStr] = Field(
        default=None,
        description="Hex secret key for the local signer (needed to build adaptors)",
    )

    # Secret vault for the stashed take-signature scalar
    vault: Literal["self", "fernet"] = Field(
        default="self",
        description="'self' encrypts to our own pubkey, 'fernet' uses vault_key",
    )
    vault_key: Optional[SecretStr] = Field(
        default=None,
        description="Fernet master key for the 'fernet' vault",
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///swaps.db",
        description="Database URL for the local record log",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator("private_key")
    @classmethod
    def validate_private_key(cls, v):
        """Reject keys that are obviously not 32-byte hex."""
        if v is not None:
            raw = v.get_secret_value().strip().lower()
            if len(raw) != 64 or any(c not in "0123456789abcdef" for c in raw):
                raise ValueError("private_key must be 64 hex characters")
            return SecretStr(raw)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.upper()


# Global config instance
config = Config()
