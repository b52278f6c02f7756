from pathlib import Path
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent

class Settings(BaseSettings):
    LLM_PROVIDER: str = "openai"            # "openai" or "gemini"
    OPENAI_API_KEY: str = ""
    OPENAI_WEBHOOK_SECRET: str = ""
    OPENAI_CHAT_MODEL: str = "gpt-4.1-nano"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    GEMINI_API_KEY: str = ""
    GEMINI_CHAT_MODEL: str = "gemini-2.5-flash"
    GEMINI_EMBEDDING_MODEL: str = "gemini-embedding-exp-03-07"
    SQLITE_DB_PATH: str = str(BASE_DIR / "data" / "marketplace.db")
    EMBEDDING_DIMENSIONS: int = 1536
    SIMILARITY_THRESHOLD: float = 0.65
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    DEFAULT_USER_ID: int = 1                # actor used when no X-User-Id header is sent
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings() #type: ignore
