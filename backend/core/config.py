import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv(".env.local")
load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _list_env(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    mongodb_uri: str = field(
        default_factory=lambda: os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    )
    mongodb_db_name: str = field(
        default_factory=lambda: os.getenv("MONGODB_DB_NAME", "clinic")
    )

    secret_key: str = field(
        default_factory=lambda: os.getenv("SECRET_KEY", "change-me")
    )
    jwt_algorithm: str = field(
        default_factory=lambda: os.getenv("JWT_ALGORITHM", "HS256")
    )
    access_token_expire_minutes: int = field(
        default_factory=lambda: _int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)
    )

    cors_origins: List[str] = field(
        default_factory=lambda: _list_env(
            "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
        )
    )

    livekit_url: str = field(default_factory=lambda: os.getenv("LIVEKIT_URL", ""))
    livekit_api_key: str = field(
        default_factory=lambda: os.getenv("LIVEKIT_API_KEY", "")
    )
    livekit_api_secret: str = field(
        default_factory=lambda: os.getenv("LIVEKIT_API_SECRET", "")
    )

    # Daily booking template
    working_hours_start: int = field(
        default_factory=lambda: _int_env("WORKING_HOURS_START", 9)
    )
    working_hours_end: int = field(
        default_factory=lambda: _int_env("WORKING_HOURS_END", 17)
    )
    slot_duration_minutes: int = field(
        default_factory=lambda: _int_env("SLOT_DURATION_MINUTES", 60)
    )

    @property
    def livekit_configured(self) -> bool:
        return all([self.livekit_url, self.livekit_api_key, self.livekit_api_secret])


settings = Settings()
