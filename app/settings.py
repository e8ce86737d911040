# app/settings.py
from __future__ import annotations

from pydantic import BaseModel
import os


class Settings(BaseModel):
    APP_NAME: str = "wordrush-server"

    # Redis (store + broadcast transport)
    REDIS_URL: str = "redis://localhost:6379/0"
    ROOM_TTL_SEC: int = 1800

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Dev
    LOG_LEVEL: str = "INFO"

    # WebSocket origin policy (comma-separated)
    WS_ALLOWED_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173,null"
    # Dev helper: allow any private LAN IP on port 5173
    WS_ALLOW_LAN_ORIGINS: bool = True

    # Game pacing (seconds)
    TOTAL_ROUNDS: int = 10
    TIME_PER_QUESTION_SEC: float = 30
    REVEAL_DELAY_SEC: float = 1.5
    LEADERBOARD_DELAY_SEC: float = 3
    NEXT_QUESTION_DELAY_SEC: float = 3
    FINAL_LEADERBOARD_DELAY_SEC: float = 5

    # Failed pacing broadcasts
    PACING_RETRY_SEC: float = 1
    PACING_MAX_ATTEMPTS: int = 3
    # pause before a step that exhausted its attempts starts over (0 = give up)
    PACING_RESCHEDULE_SEC: float = 5

    # Prefix for word image storage paths
    IMAGE_BASE_URL: str = ""


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "y", "on")


def get_settings() -> Settings:
    return Settings(
        APP_NAME=os.getenv("APP_NAME", "wordrush-server"),
        REDIS_URL=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        ROOM_TTL_SEC=int(os.getenv("ROOM_TTL_SEC", "1800")),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=int(os.getenv("PORT", "8000")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),

        WS_ALLOWED_ORIGINS=os.getenv(
            "WS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,null",
        ),
        WS_ALLOW_LAN_ORIGINS=_flag("WS_ALLOW_LAN_ORIGINS", "true"),

        TOTAL_ROUNDS=int(os.getenv("TOTAL_ROUNDS", "10")),
        TIME_PER_QUESTION_SEC=float(os.getenv("TIME_PER_QUESTION_SEC", "30")),
        REVEAL_DELAY_SEC=float(os.getenv("REVEAL_DELAY_SEC", "1.5")),
        LEADERBOARD_DELAY_SEC=float(os.getenv("LEADERBOARD_DELAY_SEC", "3")),
        NEXT_QUESTION_DELAY_SEC=float(os.getenv("NEXT_QUESTION_DELAY_SEC", "3")),
        FINAL_LEADERBOARD_DELAY_SEC=float(os.getenv("FINAL_LEADERBOARD_DELAY_SEC", "5")),
        PACING_RETRY_SEC=float(os.getenv("PACING_RETRY_SEC", "1")),
        PACING_MAX_ATTEMPTS=int(os.getenv("PACING_MAX_ATTEMPTS", "3")),
        PACING_RESCHEDULE_SEC=float(os.getenv("PACING_RESCHEDULE_SEC", "5")),
        IMAGE_BASE_URL=os.getenv("IMAGE_BASE_URL", ""),
    )
