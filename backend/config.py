from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

# Smallest row of the role table in models/game.py
SMALLEST_TABLE = 5


class Settings(BaseSettings):
    # Game rules
    min_players: int = Field(default=SMALLEST_TABLE, ge=SMALLEST_TABLE)
    starting_guns: int = 3
    mutiny_timeout_seconds: float = 60.0
    discussion_timeout_seconds: float = 30.0
    # When True, a crew that just re-picked its navigation team after a
    # successful mutiny gets another mutiny vote before navigating.
    remutiny_after_reselection: bool = False

    # CORS origins: set ALLOWED_ORIGINS env var for production (comma-separated)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
