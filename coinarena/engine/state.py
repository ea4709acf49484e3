from __future__ import annotations

from dataclasses import dataclass, field

from coinarena.common.constants import MIN_SIZE
from coinarena.common.types import BoosterKind


@dataclass(kw_only=True)
class MovableEntity:
    entity_id: str
    name: str
    x: float
    y: float
    color: str
    vx: float = 0.0
    vy: float = 0.0
    score: int = 0
    size: float = MIN_SIZE
    coin_boost_until: float | None = None
    predator_until: float | None = None
    last_eat_time: float = float("-inf")

    @property
    def is_bot(self) -> bool:
        return False

    @property
    def coin_boost_active(self) -> bool:
        return self.coin_boost_until is not None

    @property
    def predator_active(self) -> bool:
        return self.predator_until is not None


@dataclass(kw_only=True)
class Player(MovableEntity):
    persistent_id: str
    connection_id: str | None = None
    intent_x: float = 0.0
    intent_y: float = 0.0
    last_activity: float = 0.0


@dataclass(kw_only=True)
class Bot(MovableEntity):
    speed_variation: float = 1.0
    target_coin_id: int | None = None
    last_message_time: float = 0.0
    next_message_at: float = 0.0
    leave_at: float | None = None

    @property
    def is_bot(self) -> bool:
        return True


@dataclass
class Coin:
    id: int
    x: float
    y: float
    value: int = 1


@dataclass
class Booster:
    id: int
    kind: BoosterKind
    x: float
    y: float
    name: str
    effect: str
    duration: float
    hue: float = 0.0


@dataclass
class MatchState:
    time_left: int = 0
    started_at: float | None = None
    started: bool = False
    ended: bool = False
    next_start_at: float | None = None
    sync_counter: int = 0


@dataclass
class DisconnectedPlayer:
    player: Player
    disconnected_at: float


@dataclass
class ChurnSchedule:
    next_event_at: float | None = None
    forced_join_at: float | None = None


@dataclass
class WorldState:
    world_size: float
    players: dict[str, Player] = field(default_factory=dict)
    connections: dict[str, str] = field(default_factory=dict)
    disconnected: dict[str, DisconnectedPlayer] = field(default_factory=dict)
    bots: dict[str, Bot] = field(default_factory=dict)
    coins: dict[int, Coin] = field(default_factory=dict)
    boosters: dict[int, Booster] = field(default_factory=dict)
    booster_respawn_at: dict[BoosterKind, float] = field(default_factory=dict)
    match: MatchState = field(default_factory=MatchState)
    churn: ChurnSchedule = field(default_factory=ChurnSchedule)
    tick: int = 0
    next_coin_id: int = 0
    next_booster_id: int = 0
    next_bot_id: int = 0
    next_player_id: int = 0

    @property
    def half(self) -> float:
        return self.world_size / 2

    def entities(self) -> list[MovableEntity]:
        """Active players followed by bots, in insertion order."""
        return [*self.players.values(), *self.bots.values()]

    def player_for_connection(self, connection_id: str) -> Player | None:
        persistent_id = self.connections.get(connection_id)
        if persistent_id is None:
            return None
        return self.players.get(persistent_id)

    def find_entity(self, entity_id: str) -> MovableEntity | None:
        bot = self.bots.get(entity_id)
        if bot is not None:
            return bot
        for player in self.players.values():
            if player.entity_id == entity_id:
                return player
        return None
