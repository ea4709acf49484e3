from __future__ import annotations

import math
import random

from coinarena.common.constants import (
    BOT_BASE_SPEED,
    BOT_CHAT_PROBABILITY,
    BOT_CHAT_WINDOW,
    BOT_CHURN_WINDOW,
    BOT_FIRST_CHURN_WINDOW,
    BOT_FORCED_JOIN_AFTER,
    BOT_LEAVE_WINDOW,
    BOT_SPEED_VARIATION,
    DECONFLICT_COMPETITOR_PENALTY,
    DECONFLICT_PROXIMITY_WEIGHT,
    EDGE_SAFETY_MARGIN,
    FLEE_DISTANCES,
    HAZARD_RADIUS,
    PATH_STEP,
)
from coinarena.common.types import Point
from coinarena.engine.movement import distance, in_world, max_speed, steer_towards, unit
from coinarena.engine.state import Bot, Coin, MovableEntity, WorldState

BOT_NAMES = (
    "Alex", "Mike", "Sarah", "John", "Emma", "David", "Lisa", "Tom", "Anna", "Chris",
    "Maria", "James", "Kate", "Ben", "Sofia", "Nick", "Amy", "Dan", "Luna", "Max",
    "Zoe", "Ryan", "Mia", "Sam", "Lea", "Jake", "Ivy", "Leo", "Eva", "Noah",
    "Ava", "Luke", "Eli", "Kai", "Joy", "Tim", "Sky", "Ace", "Rio", "Zara",
)

BOT_MESSAGES = (
    "Nice catch!", "I'm coming for those coins!", "Watch out!",
    "So many shiny coins!", "This is fun!", "Great game everyone!",
    "I love collecting coins!", "Anyone else see that big coin?",
    "Fast fingers win!", "Golden opportunity!", "Coin rain!",
    "Speed is key!", "Catch me if you can!", "Shiny things everywhere!",
)

JOIN_LINES = (
    "{name} joined the game!",
    "Welcome {name}!",
    "{name} entered the battlefield!",
    "{name} is ready to play!",
    "A new player {name} appeared!",
)

LEAVE_LINES = (
    "{name} left the game",
    "{name} disconnected",
    "Goodbye {name}!",
    "{name} went offline",
    "See you later, {name}!",
)


# Targeting


def nearest_coin(x: float, y: float, coins: list[Coin]) -> Coin | None:
    best: Coin | None = None
    best_dist = math.inf
    for coin in coins:
        d = distance(x, y, coin.x, coin.y)
        if d < best_dist:
            best_dist = d
            best = coin
    return best


def assign_targets(bots: list[Bot], coins: list[Coin]) -> dict[str, int | None]:
    """Pick a coin per bot so that no two bots chase the same one.

    Every bot first claims its nearest coin. For each coin claimed more than
    once the closest claimant keeps it and the rest move to the alternative
    with the best ``1000/distance - 100*competitors`` score, where competitors
    counts bots already holding that alternative. Unclaimed coins are preferred
    whenever one exists.
    """
    targets: dict[str, int | None] = {}
    for bot in bots:
        coin = nearest_coin(bot.x, bot.y, coins)
        targets[bot.entity_id] = coin.id if coin else None
    if len(coins) < 2:
        return targets

    claims: dict[int, list[Bot]] = {}
    for bot in bots:
        coin_id = targets[bot.entity_id]
        if coin_id is not None:
            claims.setdefault(coin_id, []).append(bot)
    counts = {coin_id: len(claimants) for coin_id, claimants in claims.items()}
    by_id = {coin.id: coin for coin in coins}

    for coin_id in sorted(claims):
        claimants = claims[coin_id]
        if len(claimants) < 2:
            continue
        contested = by_id[coin_id]
        ordered = sorted(
            claimants,
            key=lambda b: (distance(b.x, b.y, contested.x, contested.y), b.entity_id),
        )
        for bot in ordered[1:]:
            best_id = _best_alternative(bot, coins, coin_id, counts)
            if best_id is None:
                continue
            counts[coin_id] -= 1
            counts[best_id] = counts.get(best_id, 0) + 1
            targets[bot.entity_id] = best_id
    return targets


def _best_alternative(
    bot: Bot, coins: list[Coin], excluded: int, counts: dict[int, int]
) -> int | None:
    candidates = [coin for coin in coins if coin.id != excluded]
    free = [coin for coin in candidates if not counts.get(coin.id, 0)]
    if free:
        candidates = free
    best_id: int | None = None
    best_score = -math.inf
    for coin in candidates:
        d = max(1.0, distance(bot.x, bot.y, coin.x, coin.y))
        score = (
            DECONFLICT_PROXIMITY_WEIGHT / d
            - DECONFLICT_COMPETITOR_PENALTY * counts.get(coin.id, 0)
        )
        if score > best_score:
            best_score = score
            best_id = coin.id
    return best_id


def path_is_safe(x0: float, y0: float, x1: float, y1: float, world_size: float) -> bool:
    """Walk the straight path in fixed steps; reject any step near an edge."""
    total = distance(x0, y0, x1, y1)
    steps = max(1, math.ceil(total / PATH_STEP))
    for i in range(1, steps + 1):
        t = i / steps
        px = x0 + (x1 - x0) * t
        py = y0 + (y1 - y0) * t
        if not in_world(px, py, world_size, EDGE_SAFETY_MARGIN):
            return False
    return True


def safe_target(bot: Bot, coin: Coin | None, coins: list[Coin], world_size: float) -> Point:
    if coin is not None and path_is_safe(bot.x, bot.y, coin.x, coin.y, world_size):
        return (coin.x, coin.y)
    safe = [c for c in coins if path_is_safe(bot.x, bot.y, c.x, c.y, world_size)]
    fallback = nearest_coin(bot.x, bot.y, safe)
    if fallback is not None:
        bot.target_coin_id = fallback.id
        return (fallback.x, fallback.y)
    bot.target_coin_id = None
    return (0.0, 0.0)


# Hazard avoidance


def find_threat(bot: Bot, entities: list[MovableEntity]) -> MovableEntity | None:
    threat: MovableEntity | None = None
    best = HAZARD_RADIUS
    for other in entities:
        if other is bot or not other.predator_active:
            continue
        d = distance(bot.x, bot.y, other.x, other.y)
        if d < best:
            best = d
            threat = other
    return threat


def flee_point(bot: Bot, threat: MovableEntity, world_size: float) -> Point:
    ax, ay = unit(bot.x - threat.x, bot.y - threat.y)
    if ax == 0.0 and ay == 0.0:
        ax, ay = (1.0, 0.0)
    candidates = [(ax * d, ay * d) for d in FLEE_DISTANCES]
    far = FLEE_DISTANCES[0]
    candidates.append((-ay * far, ax * far))
    candidates.append((ay * far, -ax * far))
    candidates.append((-ax * far, -ay * far))
    for dx, dy in candidates:
        px, py = bot.x + dx, bot.y + dy
        if in_world(px, py, world_size, EDGE_SAFETY_MARGIN):
            return (px, py)
    return (0.0, 0.0)


def bot_speed(bot: Bot) -> float:
    return max_speed(bot, BOT_BASE_SPEED * bot.speed_variation)


def update_bots(world: WorldState, dt: float) -> None:
    """One AI pass: deconflicted coin targets, hazard flight, then movement."""
    bots = list(world.bots.values())
    if not bots:
        return
    coins = list(world.coins.values())
    entities = world.entities()
    targets = assign_targets(bots, coins)
    for bot in bots:
        threat = find_threat(bot, entities)
        if threat is not None:
            bot.target_coin_id = None
            tx, ty = flee_point(bot, threat, world.world_size)
        else:
            bot.target_coin_id = targets.get(bot.entity_id)
            coin = world.coins.get(bot.target_coin_id) if bot.target_coin_id is not None else None
            tx, ty = safe_target(bot, coin, coins, world.world_size)
        steer_towards(bot, tx, ty, bot_speed(bot), dt, world.world_size)


# Population churn


def create_bot(world: WorldState, rng: random.Random, now: float, leaves: bool = False) -> Bot:
    half = world.half
    bot = Bot(
        entity_id=f"bot_{world.next_bot_id}",
        name=rng.choice(BOT_NAMES),
        x=rng.uniform(-half, half),
        y=rng.uniform(-half, half),
        color=f"hsl({rng.uniform(0, 360):.0f}, 70%, 50%)",
        speed_variation=rng.uniform(*BOT_SPEED_VARIATION),
        next_message_at=now + rng.uniform(*BOT_CHAT_WINDOW),
        leave_at=now + rng.uniform(*BOT_LEAVE_WINDOW) if leaves else None,
    )
    world.next_bot_id += 1
    world.bots[bot.entity_id] = bot
    return bot


def schedule_churn(world: WorldState, rng: random.Random, now: float) -> None:
    world.churn.next_event_at = now + rng.uniform(*BOT_FIRST_CHURN_WINDOW)
    world.churn.forced_join_at = now + BOT_FORCED_JOIN_AFTER


def churn_bots(
    world: WorldState,
    rng: random.Random,
    now: float,
    min_bots: int,
    max_bots: int,
) -> tuple[list[Bot], list[Bot]]:
    """Simulate players coming and going. Returns (joined, left)."""
    joined: list[Bot] = []
    left: list[Bot] = []

    for bot in list(world.bots.values()):
        if bot.leave_at is not None and now >= bot.leave_at:
            bot.leave_at = None
            if len(world.bots) > min_bots:
                left.append(world.bots.pop(bot.entity_id))

    churn = world.churn
    if churn.forced_join_at is not None and now >= churn.forced_join_at:
        churn.forced_join_at = None
        if len(world.bots) < max_bots:
            joined.append(create_bot(world, rng, now))

    if churn.next_event_at is not None and now >= churn.next_event_at:
        churn.next_event_at = now + rng.uniform(*BOT_CHURN_WINDOW)
        roll = rng.random()
        if roll <= 0.5 and len(world.bots) < max_bots:
            joined.append(create_bot(world, rng, now))
        elif roll > 0.5 and len(world.bots) > min_bots:
            leaving_id = rng.choice(sorted(world.bots))
            left.append(world.bots.pop(leaving_id))
    return joined, left


def bot_chatter(world: WorldState, rng: random.Random, now: float) -> list[tuple[Bot, str]]:
    lines: list[tuple[Bot, str]] = []
    for bot in world.bots.values():
        if now < bot.next_message_at:
            continue
        bot.next_message_at = now + rng.uniform(*BOT_CHAT_WINDOW)
        if rng.random() < BOT_CHAT_PROBABILITY:
            bot.last_message_time = now
            lines.append((bot, rng.choice(BOT_MESSAGES)))
    return lines
