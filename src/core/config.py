"""Runtime settings, read from environment variables."""

import os
from dataclasses import dataclass
from functools import lru_cache


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///chess_rooms.db"
    clock_seconds: int = 600
    tick_seconds: float = 1.0
    room_code_length: int = 6
    poll_seconds: float = 0.5
    # remote peers are trusted by default. Switch on to re-run the rules engine on inbound moves
    revalidate_remote_moves: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("CHESS_DATABASE_URL", cls.database_url),
            clock_seconds=int(os.getenv("CHESS_CLOCK_SECONDS", str(cls.clock_seconds))),
            tick_seconds=float(os.getenv("CHESS_TICK_SECONDS", str(cls.tick_seconds))),
            room_code_length=int(
                os.getenv("CHESS_ROOM_CODE_LENGTH", str(cls.room_code_length))
            ),
            poll_seconds=float(os.getenv("CHESS_POLL_SECONDS", str(cls.poll_seconds))),
            revalidate_remote_moves=_env_bool("CHESS_REVALIDATE_REMOTE_MOVES", "0"),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
