from functools import lru_cache
from typing import List, Optional, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Service
    SERVICE_NAME: str = "photoService"
    SERVICE_PORT: int = 8080
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: Union[str, List[str]] = "http://localhost:3000,http://127.0.0.1:3000"

    # Storage
    STORAGE_DRIVER: str = "azure"
    STORAGE_ACCOUNT_NAME: str = "devstoreaccount1"
    STORAGE_ACCOUNT_SUFFIX: str = "blob.core.windows.net"
    UPLOADS_CONTAINER_NAME: str = "uploads"
    IMAGES_CONTAINER_NAME: str = "images"
    AZURE_CLIENT_ID: str = ""
    # Set by Azure Container Apps; its presence switches to managed identity
    CONTAINER_APP_NAME: Optional[str] = None

    # Images
    MAX_IMAGE_WIDTH: int = 1600
    MAX_IMAGE_HEIGHT: int = 1200
    IMAGE_QUALITY: int = 85
    MAX_UPLOAD_SIZE: int = 32 * 1024 * 1024

    # Security
    JWKS_URL: str = "https://login.microsoftonline.com/common/discovery/v2.0/keys"
    JWT_ALGORITHMS: Union[str, List[str]] = "RS256"
    JWT_AUDIENCE: Optional[str] = None
    JWT_ISSUER: Optional[str] = None
    JWKS_CACHE_TTL: int = 300
    ROLE_NAME: str = "photo.upload"
    ROLE_CLAIM: str = "roles"

    # Queries
    HYDRATE_CONCURRENCY: int = 8
    COVER_REPAIR_ENABLED: bool = True
    COVER_UPDATE_RETRIES: int = 3

    # Workers
    UPLOADS_QUEUE_BINDING: str = "uploads-queue"
    FACES_QUEUE_BINDING: str = "faces-queue"
    FACE_RECOGNITION_ENABLED: bool = False
    SAMPLES_DIR: str = "samples"
    FACE_TOLERANCE: float = 0.4

    # Observability
    METRICS_ENABLED: bool = False
    SENTRY_DSN: str = ""

    @field_validator("CORS_ORIGINS", "JWT_ALGORITHMS", mode="before")
    @classmethod
    def parse_comma_list(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @property
    def storage_url(self) -> str:
        return f"https://{self.STORAGE_ACCOUNT_NAME}.{self.STORAGE_ACCOUNT_SUFFIX}"

    @property
    def is_production(self) -> bool:
        if self.CONTAINER_APP_NAME:
            return True
        return (self.APP_ENV or "").strip().lower() == "production"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Build the process settings once; components receive them explicitly."""
    return Settings()
