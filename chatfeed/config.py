"""Server configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "CHATFEED_"}

    db_path: str = "chatfeed.db"
    log_dir: str = "logs"
    feed_name: str = "feed"  # JSONL log file name under log_dir
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: list[str] = ["http://localhost:8000", "http://127.0.0.1:8000"]


settings = Settings()
