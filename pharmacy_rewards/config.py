"""
Configuration for the pharmacy rewards invoice pipeline.
"""

# Load environment variables FIRST
from dotenv import load_dotenv
load_dotenv()

import os
from typing import Optional, Tuple


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Base configuration."""

    # LLM Configuration
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "gemini")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gemini-2.5-flash")
    LLM_MOCK_MODE: bool = _env_flag("LLM_MOCK_MODE")  # Canned responses, no model call
    LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
    GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", os.getenv("LLM_API_KEY", ""))
    LLM_API_BASE: Optional[str] = os.getenv("LLM_API_BASE", None)
    LLM_TEMPERATURE: float = 0.2
    LLM_MAX_TOKENS: int = 2048
    LLM_TIMEOUT: int = 60

    # Invoice images
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "")
    IMAGE_MIME_TYPE: str = os.getenv("IMAGE_MIME_TYPE", "image/jpeg")

    # Document store
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "firestore")  # firestore or memory
    FIREBASE_PROJECT_ID: Optional[str] = os.getenv("FIREBASE_PROJECT_ID", None)

    # Validation rules
    MIN_INVOICE_AMOUNT: float = float(os.getenv("MIN_INVOICE_AMOUNT", "10"))
    VALID_NCF_PREFIXES: Tuple[str, ...] = tuple(
        prefix.strip().upper()
        for prefix in os.getenv("VALID_NCF_PREFIXES", "B01,B02,E").split(",")
        if prefix.strip()
    )

    # Points
    POINTS_EXPIRATION_MONTHS: int = int(os.getenv("POINTS_EXPIRATION_MONTHS", "12"))
    PHARMACY_TIMEZONE: str = os.getenv("PHARMACY_TIMEZONE", "America/Santo_Domingo")
    DEFAULT_PRODUCT_LINE: str = "General"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_FILE: str = os.getenv("LOG_FILE", "pharmacy_rewards.log")

    # API Configuration
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_DEBUG: bool = _env_flag("API_DEBUG")

    @classmethod
    def validate(cls) -> None:
        """Validate configuration."""
        if cls.LLM_PROVIDER not in ["gemini", "openai"]:
            raise ValueError(f"Invalid LLM_PROVIDER: {cls.LLM_PROVIDER}")

        if cls.STORE_BACKEND not in ["firestore", "memory"]:
            raise ValueError(f"Invalid STORE_BACKEND: {cls.STORE_BACKEND}")

        if not cls.VALID_NCF_PREFIXES:
            raise ValueError("VALID_NCF_PREFIXES must list at least one prefix")

        if cls.MIN_INVOICE_AMOUNT < 0:
            raise ValueError("MIN_INVOICE_AMOUNT cannot be negative")

        if cls.POINTS_EXPIRATION_MONTHS <= 0:
            raise ValueError("POINTS_EXPIRATION_MONTHS must be positive")


class DevelopmentConfig(Config):
    """Development configuration."""
    LOG_LEVEL = "DEBUG"
    API_DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    LOG_LEVEL = "INFO"
    API_DEBUG = False

    @classmethod
    def validate(cls) -> None:
        super().validate()

        if cls.LLM_MOCK_MODE:
            raise ValueError("LLM_MOCK_MODE cannot be enabled in production")

        if cls.LLM_PROVIDER == "gemini" and not cls.GOOGLE_API_KEY:
            raise ValueError("GOOGLE_API_KEY must be set for Gemini provider")

        if cls.LLM_PROVIDER == "openai" and not cls.LLM_API_KEY:
            raise ValueError("LLM_API_KEY must be set for OpenAI provider")


class TestConfig(Config):
    """Test configuration."""
    LOG_LEVEL = "DEBUG"
    LOG_FILE = ""
    STORE_BACKEND = "memory"
    STORAGE_BUCKET = "test-bucket"


def get_config(env: str = None) -> Config:
    """Get configuration based on environment."""
    if env is None:
        env = os.getenv("ENV", "development").lower()

    if env == "production":
        config = ProductionConfig()
    elif env == "test":
        config = TestConfig()
    else:
        config = DevelopmentConfig()

    # Validate configuration on creation
    config.validate()
    return config
