from pydantic import Field
from pydantic_settings import BaseSettings
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()
class Settings(BaseSettings):

    # Redis
    redis_host: str = Field(default=os.getenv("REDIS_HOST", "127.0.0.1"))
    redis_port: int = Field(default=os.getenv("REDIS_PORT", 6327))
    redis_db: int = Field(default=os.getenv("REDIS_DB", 0))
    # Retry count for transient connection failures
    redis_retries: int = Field(default=os.getenv("REDIS_RETRIES", 0), ge=0)

    # Queue
    QUEUE_NAME: str = Field(default=os.getenv("QUEUE_NAME", "default"))
    LOCK_TIME_MS: int = Field(default=os.getenv("LOCK_TIME_MS", 30000), gt=0)
    TASK_HANDLER: str = Field(default=os.getenv("TASK_HANDLER", ""))

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

settings = Settings()
