from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    DATABASE_URL: str = "sqlite:///./marketchat.db"
    DATABASE_ECHO: bool = False
    DATABASE_AUTO_CREATE: bool = False

    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str | None = None
    REALTIME_ENABLED: bool = False

    # "db" = local users table, "http" = remote profile service
    DIRECTORY_BACKEND: str = "db"
    DIRECTORY_BASE_URL: str = ""
    DIRECTORY_API_KEY: str = ""
    DIRECTORY_TIMEOUT: int = 10

    STORE_RETRY_ATTEMPTS: int = 3
    STORE_RETRY_BACKOFF_SECONDS: float = 0.05

    MESSAGE_MAX_LENGTH: int = 4000
    PREVIEW_LENGTH: int = 200
    POLL_OVERLAP_SECONDS: float = 5.0

settings = Settings()
