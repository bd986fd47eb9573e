from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "roadside-assist"

    JWT_SECRET: str = "change_me_jwt"
    JWT_TTL_MINUTES: int = 60 * 24 * 7

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8080"

    DATABASE_URL: str
    REDIS_URL: str

    FEED_BACKEND: str = "memory"  # memory | redis
    FEED_REDIS_CHANNEL: str = "roadside:feed-changes"

    POSITION_MAX_AGE_SECONDS: int = 60
    GEOCODER_URL: str = "https://nominatim.openstreetmap.org/reverse"
    GEOCODER_USER_AGENT: str = "roadside-assist/0.1"
    GEOCODER_TIMEOUT_SECONDS: float = 10.0
    GEOCODE_ON_CREATE: bool = True

    COMPLETED_JOBS_DEFAULT_LIMIT: int = 10

    ADMIN_BOOTSTRAP_ENABLED: bool = False
    ADMIN_BOOTSTRAP_EMAIL: str = "admin@example.com"
    ADMIN_BOOTSTRAP_PASSWORD: str = "admin123"
    ADMIN_BOOTSTRAP_NAME: str = "Administrator"

    # Compose/infra vars that may exist in shared .env
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "roadside"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
