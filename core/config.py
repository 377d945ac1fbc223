"""
FORMCOACH Configuration

Environment variables and application settings.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "FORMCOACH"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8080", "http://10.0.2.2:8000"]

    # Pose normalization
    KEYPOINT_CONFIDENCE_THRESHOLD: float = 0.3
    MIN_VALID_KEYPOINTS: int = 5
    DEFAULT_DETECTOR: str = "movenet"

    # Exercise profiles (optional JSON file with extra/overriding profiles)
    PROFILES_PATH: Optional[str] = None

    # Sessions
    MAX_ACTIVE_SESSIONS: int = 100
    SESSION_IDLE_TIMEOUT_SECONDS: Optional[float] = 600.0  # None keeps idle sessions

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
