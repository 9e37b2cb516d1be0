import os
from functools import lru_cache

from pydantic import BaseModel, Field

DEFAULT_PORT = 5000
DEFAULT_UPDATE_INTERVAL_MS = 2000


class Settings(BaseModel):
    port: int = Field(
        default=DEFAULT_PORT,
        ge=1,
        le=65535,
        description="TCP port the HTTP/WebSocket server listens on",
    )
    update_interval_ms: int = Field(
        default=DEFAULT_UPDATE_INTERVAL_MS,
        gt=0,
        description="Interval between two sampling ticks in milliseconds",
    )

    @property
    def update_interval_seconds(self) -> float:
        return self.update_interval_ms / 1000

    @classmethod
    def from_env(cls) -> "Settings":
        # Empty variables count as unset, invalid ones fail validation
        raw_port = os.getenv("PORT", "").strip()
        raw_interval = os.getenv("UPDATE_INTERVAL_MS", "").strip()

        return cls(
            port=raw_port or DEFAULT_PORT,
            update_interval_ms=raw_interval or DEFAULT_UPDATE_INTERVAL_MS,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
