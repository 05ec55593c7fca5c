"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "PixelCore Image Processing Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD

    # ==========================================================================
    # Background Removal Limits
    # ==========================================================================
    BG_MAX_FILE_BYTES: int = 15 * 1024 * 1024  # 15MB
    BG_MAX_DIMENSION: int = 1536
    BG_MAX_DECODE_PIXELS: int = 2048 * 2048
    BG_SAFE_WORKING_PIXELS: int = 1024 * 1024

    # ==========================================================================
    # Upscaling Limits
    # ==========================================================================
    UPSCALE_MAX_FILE_BYTES: int = 25 * 1024 * 1024  # 25MB
    UPSCALE_MAX_DIMENSION: int = 1024  # pre-scale working size
    UPSCALE_MAX_DECODE_PIXELS: int = 2048 * 2048
    UPSCALE_SAFE_WORKING_PIXELS: int = 1024 * 1024
    UPSCALE_MAX_OUTPUT_DIMENSION: int = 1536
    UPSCALE_MAX_OUTPUT_PIXELS: int = 1536 * 1536
    UPSCALE_MIN_EFFECTIVE_SCALE: float = 1.1

    # ==========================================================================
    # Resource Governor
    # ==========================================================================
    MAX_ACTIVE_OPERATIONS: int = 2
    SWEEP_INTERVAL_SECONDS: float = 15.0
    HANDLE_TTL_SECONDS: float = 120.0
    MEMORY_PRESSURE_RATIO: float = 0.8
    # Enables the memory-pressure check when set (bytes)
    MEMORY_CEILING_BYTES: Optional[int] = None

    # ==========================================================================
    # Output Settings
    # ==========================================================================
    DEFAULT_OUTPUT_QUALITY: int = 95

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
