from __future__ import annotations

import math
from dataclasses import dataclass

from coinarena.common.constants import (
    BOT_EAT_COOLDOWN,
    PLAYER_EAT_COOLDOWN,
    PREDATION_GAIN,
    PREDATION_KEEP,
)
from coinarena.engine.movement import distance, predation_reach, refresh_size
from coinarena.engine.state import MovableEntity


@dataclass
class PredationEvent:
    predator: MovableEntity
    victim: MovableEntity
    gained: int
    victim_score: int

    @property
    def victim_emptied(self) -> bool:
        return self.victim_score <= 0


def eat_cooldown(entity: MovableEntity) -> float:
    return BOT_EAT_COOLDOWN if entity.is_bot else PLAYER_EAT_COOLDOWN


def can_eat(predator: MovableEntity, now: float) -> bool:
    return predator.predator_active and now - predator.last_eat_time >= eat_cooldown(predator)


def transfer(predator: MovableEntity, victim: MovableEntity, now: float) -> PredationEvent:
    before = victim.score
    gained = math.floor(before * PREDATION_GAIN)
    victim.score = max(0, math.floor(before * PREDATION_KEEP))
    predator.score += gained
    predator.last_eat_time = now
    refresh_size(predator)
    refresh_size(victim)
    return PredationEvent(predator=predator, victim=victim, gained=gained, victim_score=victim.score)


def resolve_predation(entities: list[MovableEntity], now: float) -> list[PredationEvent]:
    """Let every boosted predator off cooldown bite at most one touching victim.

    Victims whose score reaches zero are reported with ``victim_emptied``; the
    caller removes them from the world. An emptied victim cannot be bitten
    again in the same pass, and an entity already at zero has nothing to lose
    and is never bitten.
    """
    events: list[PredationEvent] = []
    emptied: set[int] = set()
    for predator in entities:
        if id(predator) in emptied or not can_eat(predator, now):
            continue
        for victim in entities:
            if victim is predator or id(victim) in emptied or victim.score <= 0:
                continue
            if distance(predator.x, predator.y, victim.x, victim.y) >= predation_reach(
                predator, victim
            ):
                continue
            event = transfer(predator, victim, now)
            events.append(event)
            if event.victim_emptied:
                emptied.add(id(victim))
            break
    return events
