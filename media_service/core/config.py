from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Account credentials: access key id and secret access key
    MEDIA_SERVICES_ACCOUNT_NAME: str
    MEDIA_SERVICES_ACCOUNT_KEY: str

    REGION_NAME: str = "us-east-1"
    S3_ASSETS_BUCKET: str
    MEDIACONVERT_ROLE_ARN: str
    MEDIACONVERT_ENDPOINT: Optional[str] = None
    STREAMING_ENDPOINT: Optional[str] = None
    JOB_POLL_INTERVAL: float = 10.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
