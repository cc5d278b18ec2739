from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

VERSION = "1.0.0"


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: Optional[str]
    jwt_algorithm: str
    log_level: str
    host: str
    port: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./taskboard.db"),
        jwt_secret=os.getenv("JWT_SECRET") or None,
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
