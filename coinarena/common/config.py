from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(value: str, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _env_int_or_none(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)


def _parse_origins(value: str | None) -> list[str]:
    if not value:
        return [
            "http://localhost:3001",
            "http://127.0.0.1:3001",
        ]
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass(frozen=True)
class Settings:
    """Runtime settings loaded from environment variables.

    Gameplay balance lives in ``coinarena.common.constants``; only deployment
    and population knobs are tunable here.
    """

    db_path: str = os.getenv("COINARENA_DB_PATH", "coinarena.db")
    host: str = os.getenv("COINARENA_HOST", "0.0.0.0")
    port: int = int(os.getenv("COINARENA_PORT", "8000"))
    tick_rate: int = int(os.getenv("COINARENA_TICK_RATE", "60"))
    broadcast_every: int = int(os.getenv("COINARENA_BROADCAST_EVERY", "3"))
    random_seed: int | None = _env_int_or_none(os.getenv("COINARENA_RANDOM_SEED"))
    enable_tick_loop: bool = _env_bool(os.getenv("COINARENA_ENABLE_TICK_LOOP", "1"))
    cors_origins: list[str] = field(
        default_factory=lambda: _parse_origins(os.getenv("COINARENA_CORS_ORIGINS"))
    )
    world_size: float = float(os.getenv("COINARENA_WORLD_SIZE", "4000"))
    coin_count: int = int(os.getenv("COINARENA_COIN_COUNT", "300"))
    initial_bots: int = int(os.getenv("COINARENA_INITIAL_BOTS", "8"))
    min_bots: int = int(os.getenv("COINARENA_MIN_BOTS", "5"))
    max_bots: int = int(os.getenv("COINARENA_MAX_BOTS", "15"))
    max_players: int = int(os.getenv("COINARENA_MAX_PLAYERS", "200"))
    afk_timeout_seconds: float = float(os.getenv("COINARENA_AFK_TIMEOUT", "120"))
    reconnect_grace_seconds: float = float(os.getenv("COINARENA_RECONNECT_GRACE", "300"))
    leaderboard_cache_seconds: int = int(
        os.getenv("COINARENA_LEADERBOARD_CACHE_SECONDS", "30")
    )
    outbound_queue_size: int = int(os.getenv("COINARENA_OUTBOUND_QUEUE_SIZE", "256"))


settings = Settings()
