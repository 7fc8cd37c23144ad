import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    db_path: Path
    log_level: str
    log_format: str
    allowed_origins: tuple[str, ...]


@lru_cache
def get_settings() -> Settings:
    """
    Read process-wide settings from the environment.
    Cached: read-only after startup.
    """
    origins = os.getenv("STORY_ALLOWED_ORIGINS", "http://localhost:3000")
    return Settings(
        db_path=Path(os.getenv("STORY_DB_PATH", BASE_DIR / "stories.db")),
        log_level=os.getenv("STORY_LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("STORY_LOG_FORMAT", "json").lower(),
        allowed_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
    )
