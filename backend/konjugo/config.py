from pathlib import Path
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{BASE_DIR / 'konjugo.db'}"
    log_dir: Path = BASE_DIR / "data" / "logs"

    recent_attempt_window_hours: float = 6.0
    task_spec_cache_ttl_seconds: float = 60.0
    task_sync_on_read: bool = True
    task_sync_chunk_size: int = 500
    task_sync_retry_attempts: int = 3
    task_sync_retry_delay_ms: int = 250
    task_sync_profiling: bool = False

    model_config = {"env_file": [BASE_DIR / ".env", BASE_DIR.parent / ".env"], "extra": "ignore"}


settings = Settings()
