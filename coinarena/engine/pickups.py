from __future__ import annotations

import math
import random

from coinarena.common.constants import (
    BOOSTER_EDGE_MARGIN,
    BOOSTER_HUE_DEGREES_PER_SECOND,
    BOOSTER_RESPAWN_DELAY,
    CLUSTER_THRESHOLD,
    COIN_BOOST_SECONDS,
    COIN_EDGE_MARGIN,
    COIN_JITTER_FRACTION,
    COIN_MIN_SEPARATION,
    COIN_MULTIPLIER,
    COIN_SPAWN_RETRIES,
    COIN_VALUE,
    PREDATOR_BOOST_SECONDS,
    REDISTRIBUTE_FRACTION,
    UNIFORM_MEAN_DISTANCE_FACTOR,
)
from coinarena.common.types import BoosterKind, Point
from coinarena.engine.movement import distance, refresh_size, touching
from coinarena.engine.state import Booster, Coin, MovableEntity, WorldState

BOOSTER_CATALOG = {
    BoosterKind.COIN_MULTIPLIER: ("Coin Multiplier", "2x Coins", COIN_BOOST_SECONDS),
    BoosterKind.PREDATOR: ("Player Eater", "Eat Players", PREDATOR_BOOST_SECONDS),
}


def _grid_dims(world: WorldState, count: int) -> tuple[int, float, float]:
    cells = max(1, math.ceil(math.sqrt(max(1, count))))
    span = world.world_size - 2 * COIN_EDGE_MARGIN
    return cells, span / cells, -world.half + COIN_EDGE_MARGIN


def _jittered_cell_point(
    col: int, row: int, cell: float, origin: float, rng: random.Random
) -> Point:
    jitter = cell * COIN_JITTER_FRACTION
    cx = origin + (col + 0.5) * cell
    cy = origin + (row + 0.5) * cell
    return (cx + rng.uniform(-jitter, jitter), cy + rng.uniform(-jitter, jitter))


def _too_close(x: float, y: float, coins: list[Coin]) -> bool:
    return any(distance(x, y, c.x, c.y) < COIN_MIN_SEPARATION for c in coins)


def spawn_coin_position(world: WorldState, rng: random.Random, target_count: int) -> Point:
    """Grid-stratified sample with bounded jitter and a capped rejection loop."""
    cells, cell, origin = _grid_dims(world, target_count)
    existing = list(world.coins.values())
    candidate = (0.0, 0.0)
    for _ in range(COIN_SPAWN_RETRIES):
        candidate = _jittered_cell_point(
            rng.randrange(cells), rng.randrange(cells), cell, origin, rng
        )
        if not _too_close(candidate[0], candidate[1], existing):
            return candidate
    return candidate


def _add_coin(world: WorldState, pos: Point) -> Coin:
    coin = Coin(id=world.next_coin_id, x=pos[0], y=pos[1], value=COIN_VALUE)
    world.next_coin_id += 1
    world.coins[coin.id] = coin
    return coin


def generate_coins(world: WorldState, rng: random.Random, count: int) -> None:
    """Replace the coin field with ``count`` coins, one per shuffled grid cell."""
    world.coins.clear()
    world.next_coin_id = 0
    cells, cell, origin = _grid_dims(world, count)
    slots = [(col, row) for col in range(cells) for row in range(cells)]
    rng.shuffle(slots)
    for col, row in slots[:count]:
        _add_coin(world, _jittered_cell_point(col, row, cell, origin, rng))


def coin_value(entity: MovableEntity, coin: Coin) -> int:
    if entity.coin_boost_active:
        return coin.value * COIN_MULTIPLIER
    return coin.value


def collect_coins(
    world: WorldState, entity: MovableEntity, rng: random.Random, target_count: int
) -> int:
    """Collect every coin the entity touches; each one is replaced at once.

    Returns the score gained.
    """
    gained = 0
    for coin in list(world.coins.values()):
        if not touching(entity, coin.x, coin.y, entity.size):
            continue
        gained += coin_value(entity, coin)
        del world.coins[coin.id]
        _add_coin(world, spawn_coin_position(world, rng, target_count))
    if gained:
        entity.score += gained
        refresh_size(entity)
    return gained


def mean_pairwise_distance(coins: list[Coin]) -> float:
    if len(coins) < 2:
        return 0.0
    total = 0.0
    pairs = 0
    for i, a in enumerate(coins):
        for b in coins[i + 1 :]:
            total += distance(a.x, a.y, b.x, b.y)
            pairs += 1
    return total / pairs


def redistribute_coins(world: WorldState, rng: random.Random, target_count: int) -> int:
    """Relocate a fraction of coins when the field has drifted into clusters.

    Returns how many coins were moved.
    """
    coins = list(world.coins.values())
    if len(coins) < 2:
        return 0
    span = world.world_size - 2 * COIN_EDGE_MARGIN
    expected = UNIFORM_MEAN_DISTANCE_FACTOR * span
    if mean_pairwise_distance(coins) >= expected * CLUSTER_THRESHOLD:
        return 0
    moved = rng.sample(coins, max(1, int(len(coins) * REDISTRIBUTE_FRACTION)))
    for coin in moved:
        del world.coins[coin.id]
    for coin in moved:
        coin.x, coin.y = spawn_coin_position(world, rng, target_count)
        world.coins[coin.id] = coin
    return len(moved)


def spawn_booster(world: WorldState, rng: random.Random, kind: BoosterKind) -> Booster:
    name, effect, duration = BOOSTER_CATALOG[kind]
    half = world.half - BOOSTER_EDGE_MARGIN
    booster = Booster(
        id=world.next_booster_id,
        kind=kind,
        x=rng.uniform(-half, half),
        y=rng.uniform(-half, half),
        name=name,
        effect=effect,
        duration=duration,
        hue=rng.uniform(0, 360),
    )
    world.next_booster_id += 1
    world.boosters[booster.id] = booster
    return booster


def apply_booster(entity: MovableEntity, booster: Booster, now: float) -> None:
    expires_at = now + booster.duration
    if booster.kind == BoosterKind.COIN_MULTIPLIER:
        entity.coin_boost_until = expires_at
    else:
        entity.predator_until = expires_at
        refresh_size(entity)


def collect_boosters(world: WorldState, entity: MovableEntity, now: float) -> list[Booster]:
    """Boosters are removed on pickup; respawn waits for the effect to expire."""
    collected: list[Booster] = []
    for booster in list(world.boosters.values()):
        if not touching(entity, booster.x, booster.y, entity.size):
            continue
        del world.boosters[booster.id]
        apply_booster(entity, booster, now)
        collected.append(booster)
    return collected


def expire_boosts(world: WorldState, entity: MovableEntity, now: float) -> list[BoosterKind]:
    expired: list[BoosterKind] = []
    if entity.coin_boost_until is not None and now >= entity.coin_boost_until:
        entity.coin_boost_until = None
        expired.append(BoosterKind.COIN_MULTIPLIER)
    if entity.predator_until is not None and now >= entity.predator_until:
        entity.predator_until = None
        refresh_size(entity)
        expired.append(BoosterKind.PREDATOR)
    for kind in expired:
        world.booster_respawn_at[kind] = now + BOOSTER_RESPAWN_DELAY
    return expired


def release_boosts(world: WorldState, entity: MovableEntity, now: float) -> None:
    """Schedule respawns for effects held by an entity leaving the world for good."""
    held = (
        (BoosterKind.COIN_MULTIPLIER, entity.coin_boost_until),
        (BoosterKind.PREDATOR, entity.predator_until),
    )
    for kind, until in held:
        if until is not None:
            world.booster_respawn_at[kind] = max(now, until) + BOOSTER_RESPAWN_DELAY
    entity.coin_boost_until = None
    entity.predator_until = None


def respawn_due_boosters(world: WorldState, rng: random.Random, now: float) -> list[Booster]:
    """Spawn boosters whose respawn is due. A kind already on the field is skipped."""
    present = {booster.kind for booster in world.boosters.values()}
    spawned: list[Booster] = []
    for kind, due in list(world.booster_respawn_at.items()):
        if now < due:
            continue
        del world.booster_respawn_at[kind]
        if kind in present:
            continue
        spawned.append(spawn_booster(world, rng, kind))
        present.add(kind)
    return spawned


def reset_boosters(world: WorldState, rng: random.Random) -> None:
    world.boosters.clear()
    world.booster_respawn_at.clear()
    for kind in BoosterKind:
        spawn_booster(world, rng, kind)


def advance_booster_hue(world: WorldState, dt: float) -> None:
    for booster in world.boosters.values():
        booster.hue = (booster.hue + BOOSTER_HUE_DEGREES_PER_SECOND * dt) % 360
