from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Application
    app_name: str = "TherapyBill PHI Core"
    debug: bool = False

    # Field-level encryption for PHI (names, contact details, clinical notes).
    # Either 64 hex characters (raw 256-bit key) or a passphrase run through scrypt.
    # Generate a raw key with: python crypto.py
    phi_encryption_key: str = ""

    # Keep the scrypt-derived key on the provider instead of re-deriving per call
    phi_cache_derived_key: bool = False

    model_config = {
        "env_file": ("../.env", ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
