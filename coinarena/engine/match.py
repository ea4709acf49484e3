from __future__ import annotations

import math
import random
from datetime import datetime, timedelta, timezone

from coinarena.common.types import MatchPhase
from coinarena.engine.movement import refresh_size
from coinarena.engine.pickups import generate_coins, reset_boosters
from coinarena.engine.state import MatchState, WorldState

DAY_SECONDS = 86400


def _utc(now: float) -> datetime:
    return datetime.fromtimestamp(now, tz=timezone.utc)


def end_of_utc_day(now: float) -> float:
    """Timestamp of 23:59:59.999 UTC on the day containing ``now``."""
    day_start = _utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    return (day_start + timedelta(days=1, milliseconds=-1)).timestamp()


def next_utc_midnight(now: float) -> float:
    day_start = _utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    return (day_start + timedelta(days=1)).timestamp()


def time_until_end_of_utc_day(now: float) -> int:
    return max(0, math.floor(end_of_utc_day(now) - now))


def phase(match: MatchState) -> MatchPhase:
    if match.started and not match.ended:
        return MatchPhase.RUNNING
    if match.ended:
        return MatchPhase.ENDED
    return MatchPhase.IDLE


def is_running(match: MatchState) -> bool:
    return phase(match) == MatchPhase.RUNNING


def _reset_round(world: WorldState, rng: random.Random, coin_count: int) -> None:
    parked = [entry.player for entry in world.disconnected.values()]
    for entity in world.entities() + parked:
        entity.score = 0
        refresh_size(entity)
    generate_coins(world, rng, coin_count)


def start_match(world: WorldState, rng: random.Random, now: float, coin_count: int) -> None:
    """Idle/Ended -> Running. Scores and the coin field start fresh."""
    match = world.match
    match.time_left = time_until_end_of_utc_day(now)
    match.started_at = now
    match.started = True
    match.ended = False
    match.next_start_at = None
    match.sync_counter = 0
    _reset_round(world, rng, coin_count)


def final_standings(world: WorldState) -> list[dict]:
    entries = [
        {
            "id": entity.entity_id,
            "name": entity.name,
            "score": entity.score,
            "isBot": entity.is_bot,
        }
        for entity in world.entities()
    ]
    return sorted(entries, key=lambda e: e["score"], reverse=True)


def end_match(
    world: WorldState, rng: random.Random, now: float, coin_count: int
) -> list[dict]:
    """Running -> Ended. Returns standings captured before the reset."""
    match = world.match
    standings = final_standings(world)
    match.started = False
    match.ended = True
    match.time_left = 0
    match.next_start_at = next_utc_midnight(now)
    parked = [entry.player for entry in world.disconnected.values()]
    for entity in world.entities() + parked:
        entity.coin_boost_until = None
        entity.predator_until = None
        entity.vx = entity.vy = 0.0
    for player in world.players.values():
        player.intent_x = player.intent_y = 0.0
    _reset_round(world, rng, coin_count)
    reset_boosters(world, rng)
    return standings


def return_to_idle(world: WorldState) -> None:
    match = world.match
    match.started = False
    match.ended = False
    match.next_start_at = None
    match.time_left = 0
