from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "TeleQueue"
    API_V1_STR: str = "/api/v1"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DB: str = "telequeue"
    DATABASE_URL: Optional[str] = None
    SQL_ECHO: bool = False

    REDIS_URL: str = "redis://localhost:6379/0"
    SECRET_KEY: str = "change-me-telequeue-development-secret"
    ALGORITHM: str = "HS256"

    # Queue tuning
    AVG_CONSULTATION_MINUTES: int = 15
    CONSULTATION_SLOT_MINUTES: int = 15
    DISCONNECT_GRACE_SECONDS: float = 0

    LOG_LEVEL: str = "INFO"

    class Config:
        case_sensitive = True
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.DATABASE_URL:
            self.DATABASE_URL = f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"

settings = Settings()
