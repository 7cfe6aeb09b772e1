from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Load env from .env file
    model_config = {"env_file": ".env", "extra": "ignore"}

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LOG_LEVEL: str = "INFO"

    # Declared for compatibility with existing deployments; nothing reads it.
    CACHE: int = 0

    # Origin fetch
    FETCH_TIMEOUT: Optional[float] = 30.0
    USER_AGENT: str = "Bandwidth-Hero Compressor"
    VIA: str = "1.1 bandwidth-hero"

    # Transform
    DECODE_SPOOL_SIZE: int = 1024 * 1024
    STREAM_CHUNK_SIZE: int = 64 * 1024
    STREAM_WINDOW: int = 4


@lru_cache
def get_settings() -> Settings:
    return Settings()
