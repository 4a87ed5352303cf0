"""
Application configuration
"""
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_TITLE: str = "Platform Manifest API"
    API_VERSION: str = "0.1.0"

    # Manifest generation
    MANIFEST_OUTPUT_PATH: str = "/files/artifacts/platform_manifest.txt"

    # Packages allowed to ship their real versions over the shared framework
    UPGRADEABLE_PACKAGES: List[str] = []

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
