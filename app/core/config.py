from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # PostgreSQL Configuration
    postgres_user: str = Field(default="admin", env="POSTGRES_USER")
    postgres_password: str = Field(default="admin", env="POSTGRES_PASSWORD")
    postgres_db: str = Field(default="swipematch", env="POSTGRES_DB")
    postgres_host: str = Field(default="db", env="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, env="POSTGRES_PORT")

    # Redis (rate limiting)
    redis_url: str = Field(default="redis://redis:6379/0", env="REDIS_URL")
    redis_pool_size: int = Field(default=20, env="REDIS_POOL_SIZE")

    # Application Configuration
    app_env: str = Field(default="dev", env="APP_ENV")
    api_port: int = Field(default=8000, env="API_PORT")
    jwt_secret: str = Field(
        default="change-me-in-production-use-a-secure-random-string",
        env="JWT_SECRET"
    )
    access_token_expires: int = Field(default=900, env="ACCESS_TOKEN_EXPIRES")  # 15 minutes

    # Swipe / rewind
    rewind_budget_per_session: int = Field(default=3, env="REWIND_BUDGET_PER_SESSION")
    swipe_rate_limit: int = Field(default=120, env="SWIPE_RATE_LIMIT")
    swipe_rate_window_seconds: int = Field(default=60, env="SWIPE_RATE_WINDOW_SECONDS")

    # Conversation
    message_max_length: int = Field(default=2000, env="MESSAGE_MAX_LENGTH")
    message_rate_limit: int = Field(default=30, env="MESSAGE_RATE_LIMIT")
    message_rate_window_seconds: int = Field(default=10, env="MESSAGE_RATE_WINDOW_SECONDS")
    message_history_limit: int = Field(default=200, env="MESSAGE_HISTORY_LIMIT")

    # Presence
    presence_online_threshold_seconds: int = Field(default=600, env="PRESENCE_ONLINE_THRESHOLD_SECONDS")  # 10 minutes

    # WebSocket
    ws_heartbeat_seconds: int = Field(default=30, env="WS_HEARTBEAT_SECONDS")
    ws_auth_timeout_seconds: float = Field(default=10.0, env="WS_AUTH_TIMEOUT_SECONDS")

    @property
    def database_url(self) -> str:
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # CORS - allow frontend origins (filter out None values)
    allowed_origins: List[str] = [
        origin for origin in [
            "http://localhost:3000",
            "http://localhost:5173",   # Vite dev server
            "http://localhost:8081",   # Expo Metro
            os.getenv("FRONTEND_URL")
        ] if origin is not None
    ]

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
