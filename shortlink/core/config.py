from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Short Link Service"
    LOG_LEVEL: str = "INFO"

    # Infrastructure Configs (Env Vars)
    POSTGRES_USER: str = "shortlink"
    POSTGRES_PASSWORD: str = "shortlink"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: str = "5432"
    POSTGRES_DB: str = "shortlink"
    # Full SQLAlchemy URL; takes precedence over the POSTGRES_* parts
    DATABASE_URL: Optional[str] = None

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Domain prepended to every generated code
    BASE_URL: str = "http://localhost:8080"

    # Link resolution
    REQUEST_TIMEOUT: float = 5.0
    CACHE_TTL: int = 86400
    MAX_ATTEMPTS_PER_LENGTH: int = 1000
    PERSIST_RETRIES: int = 3

    # Membership index
    BLOOM_CAPACITY: int = 1_000_000_000
    BLOOM_ERROR_RATE: float = 0.01

    # Analytics
    STATS_TTL: int = 604800
    TOP_SOURCES_LIMIT: int = 10

    # Access log shipping
    ACCESS_LOG_ENABLED: bool = True
    ACCESS_LOG_STREAM: str = "shortlink:access_log"
    ACCESS_LOG_GROUP: str = "shortlink_consumer_group"
    ACCESS_LOG_MAXLEN: int = 1_000_000

    # Redirect-path background work
    WORKER_POOL_SIZE: int = 8
    WORKER_QUEUE_SIZE: int = 1000

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:"
            f"{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
