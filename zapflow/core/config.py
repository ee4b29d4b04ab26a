"""
Configuration settings using Pydantic
"""
from functools import lru_cache
from typing import Optional
from pathlib import Path
from pydantic_settings import BaseSettings

# Project root (one level above the package)
ROOT_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = ROOT_DIR / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # App
    APP_NAME: str = "ZapFlow"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Storage: "memory" or "supabase"
    STORE_BACKEND: str = "memory"

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"

    # UAZAPI
    UAZAPI_SERVER: str = "https://api.uazapi.com"
    UAZAPI_TOKEN: Optional[str] = None

    # Flow engine
    FLOW_MAX_STEPS_PER_MESSAGE: int = 50
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 30.0
    DELAY_CHECK_INTERVAL_SECONDS: int = 15

    class Config:
        env_file = str(ENV_FILE)
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
