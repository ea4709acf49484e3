from __future__ import annotations

import math

from coinarena.common.constants import (
    MAX_SIZE,
    MIN_SIZE,
    PLAYER_BASE_SPEED,
    PREDATION_REACH_FACTOR,
    PREDATOR_SIZE_FLOOR,
    PREDATOR_SPEED,
    SIZE_PER_SQRT_SCORE,
    SPEED_CURVE,
    SPEED_FLOOR,
    VELOCITY_SMOOTHING,
)
from coinarena.common.types import Point, Vector
from coinarena.engine.state import MovableEntity, Player

EPS = 1e-9


def distance(ax: float, ay: float, bx: float, by: float) -> float:
    return math.hypot(bx - ax, by - ay)


def touching(a: MovableEntity, x: float, y: float, radius: float) -> bool:
    """Circular proximity test, the only collision primitive."""
    return distance(a.x, a.y, x, y) < radius


def predation_reach(a: MovableEntity, b: MovableEntity) -> float:
    return (a.size + b.size) * PREDATION_REACH_FACTOR


def unit(dx: float, dy: float) -> Vector:
    length = math.hypot(dx, dy)
    if length <= EPS:
        return (0.0, 0.0)
    return (dx / length, dy / length)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_to_world(x: float, y: float, world_size: float) -> Point:
    half = world_size / 2
    return (clamp(x, -half, half), clamp(y, -half, half))


def in_world(x: float, y: float, world_size: float, margin: float = 0.0) -> bool:
    half = world_size / 2 - margin
    return -half <= x <= half and -half <= y <= half


def size_for_score(score: int) -> float:
    return clamp(MIN_SIZE + math.sqrt(max(0, score)) * SIZE_PER_SQRT_SCORE, MIN_SIZE, MAX_SIZE)


def refresh_size(entity: MovableEntity) -> None:
    size = size_for_score(entity.score)
    if entity.predator_active:
        size = max(size, PREDATOR_SIZE_FLOOR)
    entity.size = size


def speed_multiplier(score: float) -> float:
    """Score-based slowdown, piecewise linear between fixed breakpoints.

    Full speed up to 100, then 0.85 at 250, 0.70 at 500 and 0.55 at 1000,
    falling to a flat 0.40 beyond 1000. A score sitting exactly on a
    breakpoint gets that breakpoint's value.
    """
    first_score, first_mult = SPEED_CURVE[0]
    if score <= first_score:
        return first_mult
    prev_score, prev_mult = first_score, first_mult
    for bp_score, bp_mult in SPEED_CURVE[1:]:
        if score <= bp_score:
            progress = (score - prev_score) / (bp_score - prev_score)
            return prev_mult + (bp_mult - prev_mult) * progress
        prev_score, prev_mult = bp_score, bp_mult
    return SPEED_FLOOR


def max_speed(entity: MovableEntity, base_speed: float) -> float:
    if entity.predator_active:
        return PREDATOR_SPEED
    return base_speed * speed_multiplier(entity.score)


def normalize_intent(vector: object) -> Vector | None:
    """Validate a client movement vector; None means drop the intent."""
    if not isinstance(vector, (tuple, list)) or len(vector) != 2:
        return None
    x, y = vector
    if isinstance(x, bool) or isinstance(y, bool):
        return None
    if not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
        return None
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    if abs(x) > 1.0 or abs(y) > 1.0:
        return None
    length = math.hypot(x, y)
    if length > 1.0:
        return (x / length, y / length)
    return (float(x), float(y))


def integrate_player(player: Player, dt: float, world_size: float) -> None:
    """Ease velocity toward intent * max speed and advance the position."""
    speed = max_speed(player, PLAYER_BASE_SPEED)
    factor = min(1.0, dt * VELOCITY_SMOOTHING)
    player.vx += (player.intent_x * speed - player.vx) * factor
    player.vy += (player.intent_y * speed - player.vy) * factor
    player.x, player.y = clamp_to_world(
        player.x + player.vx * dt, player.y + player.vy * dt, world_size
    )


def steer_towards(
    entity: MovableEntity, tx: float, ty: float, speed: float, dt: float, world_size: float
) -> None:
    """Set velocity straight at (tx, ty) and move; never overshoots the point."""
    dx = tx - entity.x
    dy = ty - entity.y
    dist = math.hypot(dx, dy)
    if dist <= EPS or speed <= 0:
        entity.vx = 0.0
        entity.vy = 0.0
        return
    ux, uy = dx / dist, dy / dist
    entity.vx = ux * speed
    entity.vy = uy * speed
    step = min(speed * dt, dist)
    entity.x, entity.y = clamp_to_world(entity.x + ux * step, entity.y + uy * step, world_size)
