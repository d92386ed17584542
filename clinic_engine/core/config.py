from typing import List, Literal, Union
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "Clinic Availability and Queue Engine"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database
    DATABASE_URL: str = "sqlite:///./clinic_engine.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20

    @model_validator(mode='after')
    def normalize_db_connection(self) -> 'Settings':
        # Repositories run on a sync Session, so async driver URLs are mapped back
        if self.DATABASE_URL.startswith("postgresql+asyncpg://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgresql+asyncpg://", "postgresql://", 1)
            self.DATABASE_URL = self.DATABASE_URL.replace("ssl=require", "sslmode=require")
        return self

    # Walk-in queue
    WALK_IN_OUTSIDE_HOURS_POLICY: Literal["block", "allow"] = "block"
    WALK_IN_SLOT_MINUTES: int = 30

    # Bounded retry on storage contention (token allocation, leave commit)
    STORAGE_RETRY_MAX_ATTEMPTS: int = 5
    STORAGE_RETRY_BACKOFF_SECONDS: float = 0.05

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra='ignore')

settings = Settings()
