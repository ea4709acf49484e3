from __future__ import annotations

import logging
import math
import random
import time

from coinarena.common.constants import (
    AFK_SWEEP_SECONDS,
    CLOCK_SYNC_EVERY,
    MAX_CHAT_LENGTH,
    MAX_NAME_LENGTH,
    MAX_PERSISTENT_ID_LENGTH,
    REDISTRIBUTE_SECONDS,
)
from coinarena.common.types import MatchPhase, Outbound, RemovalReason
from coinarena.engine.bots import (
    JOIN_LINES,
    LEAVE_LINES,
    bot_chatter,
    churn_bots,
    create_bot,
    schedule_churn,
    update_bots,
)
from coinarena.engine.liveness import (
    bind_connection,
    expire_disconnected,
    find_afk,
    park_disconnected,
    reclaim,
    remove_player,
    touch,
)
from coinarena.engine.match import (
    end_match,
    end_of_utc_day,
    is_running,
    phase,
    return_to_idle,
    start_match,
    time_until_end_of_utc_day,
)
from coinarena.engine.movement import integrate_player, normalize_intent
from coinarena.engine.pickups import (
    advance_booster_hue,
    collect_boosters,
    collect_coins,
    expire_boosts,
    generate_coins,
    redistribute_coins,
    release_boosts,
    reset_boosters,
    respawn_due_boosters,
)
from coinarena.engine.predation import resolve_predation
from coinarena.engine.state import MovableEntity, Player, WorldState
from coinarena.persist.base import Persistence

logger = logging.getLogger(__name__)

SPAWN_MARGIN = 100.0
DEFAULT_NAME = "Player"
SYSTEM_SENDER = "system"


def _clean_text(value: object, limit: int) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    return text[:limit]


def normalize_persistent_id(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    pid = value.strip().lower()
    if not pid or len(pid) > MAX_PERSISTENT_ID_LENGTH:
        return None
    return pid


class SimulationEngine:
    """Authoritative simulation of a single shared arena."""

    def __init__(
        self,
        persistence: Persistence,
        seed: int | None = None,
        world_size: float = 4000.0,
        coin_count: int = 300,
        initial_bots: int = 8,
        min_bots: int = 5,
        max_bots: int = 15,
        max_players: int | None = None,
        afk_timeout: float = 120.0,
        reconnect_grace: float = 300.0,
        broadcast_every: int = 3,
        now: float | None = None,
    ) -> None:
        now = time.time() if now is None else now
        self.persistence = persistence
        self.rng = random.Random(seed)
        self.coin_count = coin_count
        self.min_bots = min_bots
        self.max_bots = max_bots
        self.max_players = max_players
        self.afk_timeout = afk_timeout
        self.reconnect_grace = reconnect_grace
        self.broadcast_every = max(1, broadcast_every)
        self.world = WorldState(world_size=world_size)
        self._outbox: list[Outbound] = []
        self._dirty: set[str] = set()
        self._next_afk_sweep = now + AFK_SWEEP_SECONDS
        self._next_redistribution = now + REDISTRIBUTE_SECONDS

        generate_coins(self.world, self.rng, coin_count)
        reset_boosters(self.world, self.rng)
        for _ in range(initial_bots):
            create_bot(self.world, self.rng, now, leaves=True)
        schedule_churn(self.world, self.rng, now)

    # Client intents

    def join(
        self,
        connection_id: str,
        name: object,
        color_hue: object,
        persistent_id: object,
        now: float,
    ) -> Player | None:
        """Bind a connection to a player, reusing any record for the same id.

        Returns None when the request is invalid or the arena is full.
        """
        pid = normalize_persistent_id(persistent_id)
        if pid is None:
            return None
        world = self.world
        clean_name = _clean_text(name, MAX_NAME_LENGTH)

        bound = world.player_for_connection(connection_id)
        if bound is not None and bound.persistent_id != pid:
            self.disconnect(connection_id, now)

        player = world.players.get(pid)
        if player is not None:
            displaced = bind_connection(world, player, connection_id)
            if displaced is not None:
                logger.info("Player %s rebound from %s to %s", pid, displaced, connection_id)
                self._emit(
                    "entityRemoved",
                    {"id": player.entity_id, "reason": RemovalReason.REPLACED.value},
                    connection_id=displaced,
                    close=True,
                )
        else:
            if self.max_players is not None and len(world.players) >= self.max_players:
                logger.warning("Join refused for %s: arena full", pid)
                return None
            player = reclaim(world, pid, now, self.reconnect_grace)
            if player is not None:
                logger.info("Player %s reconnected as %s", pid, player.entity_id)
            else:
                player = self._create_player(pid, clean_name, color_hue)
                logger.info("Player %s joined as %s", pid, player.entity_id)
            bind_connection(world, player, connection_id)
            self._emit("entityJoined", {"entity": self._entity_full(player)})

        if clean_name:
            player.name = clean_name
        touch(player, now)
        self._dirty.add(pid)

        if phase(world.match) == MatchPhase.IDLE:
            self._start_match(now)
        self._emit(
            "worldSnapshot", self.render_world_snapshot(player, now), connection_id=connection_id
        )
        return player

    def move(self, connection_id: str, vector: object, now: float) -> bool:
        player = self.world.player_for_connection(connection_id)
        if player is None or not is_running(self.world.match):
            return False
        intent = normalize_intent(vector)
        if intent is None:
            return False
        player.intent_x, player.intent_y = intent
        if intent != (0.0, 0.0):
            touch(player, now)
        return True

    def chat(self, connection_id: str, text: object, now: float) -> bool:
        player = self.world.player_for_connection(connection_id)
        if player is None:
            return False
        message = _clean_text(text, MAX_CHAT_LENGTH)
        if message is None:
            return False
        touch(player, now)
        self._emit(
            "chatMessage",
            {
                "senderId": player.entity_id,
                "name": player.name,
                "message": message,
                "isBot": False,
                "timestamp": now,
            },
        )
        return True

    def disconnect(self, connection_id: str, now: float) -> None:
        player = self.world.player_for_connection(connection_id)
        if player is None:
            self.world.connections.pop(connection_id, None)
            return
        self._flush_player(player)
        if player.score > 0:
            self._notify_persistence(
                "record_session_completion",
                player.persistent_id,
                player.score,
                {"reason": "disconnect", "name": player.name},
            )
        park_disconnected(self.world, player, now)
        logger.info("Player %s disconnected, held for reconnection", player.persistent_id)
        self._emit(
            "entityRemoved",
            {"id": player.entity_id, "reason": RemovalReason.DISCONNECTED.value},
        )

    def request_new_match(self, now: float) -> bool:
        if is_running(self.world.match):
            return False
        self._start_match(now)
        return True

    # Simulation

    def tick_once(self, dt: float, now: float) -> None:
        world = self.world
        world.tick += 1
        for player in world.players.values():
            integrate_player(player, dt, world.world_size)

        if is_running(world.match):
            update_bots(world, dt)
            self._resolve_pickups(now)
            self._resolve_predation(now)
            self._update_boosters(dt, now)
            if now >= self._next_redistribution:
                self._next_redistribution = now + REDISTRIBUTE_SECONDS
                moved = redistribute_coins(world, self.rng, self.coin_count)
                if moved:
                    logger.info("Redistributed %s clustered coins", moved)

        if now >= self._next_afk_sweep:
            self._next_afk_sweep = now + AFK_SWEEP_SECONDS
            for player in find_afk(world, now, self.afk_timeout):
                self._evict_afk(player, now)

        self._churn(now)
        self._chatter(now)
        for player in expire_disconnected(world, now, self.reconnect_grace):
            release_boosts(world, player, now)
            logger.info("Reconnection window closed for %s", player.persistent_id)

        self._flush_stats()
        if world.tick % self.broadcast_every == 0:
            self._emit("deltaUpdate", self._delta_payload(now))

    def update_match_clock(self, now: float) -> None:
        """The 1 Hz match clock: countdown, periodic sync, end and restart."""
        match = self.world.match
        if is_running(match):
            match.time_left = time_until_end_of_utc_day(now)
            match.sync_counter += 1
            ends_at = end_of_utc_day(match.started_at if match.started_at is not None else now)
            if match.time_left <= 0 or now >= ends_at:
                self._end_match(now)
                return
            if match.sync_counter % CLOCK_SYNC_EVERY == 0:
                self._emit(
                    "matchClockSync",
                    {
                        "timeLeft": match.time_left,
                        "serverTime": now,
                        "endOfDay": end_of_utc_day(now),
                    },
                )
            return
        if match.ended and match.next_start_at is not None and now >= match.next_start_at:
            if self.world.players or self.world.bots:
                self._start_match(now)
            else:
                return_to_idle(self.world)
                logger.info("Arena empty at scheduled start; waiting for players")

    def shutdown_notice(self, now: float | None = None) -> None:
        self._emit(
            "serverShutdown",
            {"message": "Server is restarting", "serverTime": time.time() if now is None else now},
        )

    def drain_outbox(self) -> list[Outbound]:
        messages = self._outbox
        self._outbox = []
        return messages

    # Rendering

    def render_world_snapshot(self, player: Player, now: float | None = None) -> dict:
        world = self.world
        return {
            "selfId": player.entity_id,
            "worldSize": world.world_size,
            "players": [self._entity_full(p) for p in world.players.values()],
            "bots": [self._entity_full(b) for b in world.bots.values()],
            "coins": self._coins_payload(),
            "boosters": self._boosters_payload(),
            "match": self._match_payload(time.time() if now is None else now),
        }

    def _entity_full(self, entity: MovableEntity) -> dict:
        return {
            "id": entity.entity_id,
            "name": entity.name,
            "color": entity.color,
            "isBot": entity.is_bot,
            "x": round(entity.x),
            "y": round(entity.y),
            "score": entity.score,
            "size": round(entity.size, 1),
            "coinBoost": entity.coin_boost_active,
            "predator": entity.predator_active,
        }

    def _entity_delta(self, entity: MovableEntity) -> dict:
        return {
            "id": entity.entity_id,
            "x": round(entity.x),
            "y": round(entity.y),
            "vx": round(entity.vx, 1),
            "vy": round(entity.vy, 1),
            "score": entity.score,
            "size": round(entity.size, 1),
            "coinBoost": entity.coin_boost_active,
            "predator": entity.predator_active,
        }

    def _coins_payload(self) -> list[list[int]]:
        return [[c.id, round(c.x), round(c.y)] for c in self.world.coins.values()]

    def _boosters_payload(self) -> list[dict]:
        return [
            {
                "id": b.id,
                "kind": b.kind.value,
                "name": b.name,
                "effect": b.effect,
                "x": round(b.x),
                "y": round(b.y),
                "hue": round(b.hue),
            }
            for b in self.world.boosters.values()
        ]

    def _match_payload(self, now: float) -> dict:
        match = self.world.match
        return {
            "phase": phase(match).value,
            "timeLeft": match.time_left,
            "endOfDay": end_of_utc_day(now),
            "nextMatchAt": match.next_start_at,
        }

    def _delta_payload(self, now: float) -> dict:
        return {
            "tick": self.world.tick,
            "serverTime": now,
            "entities": [self._entity_delta(e) for e in self.world.entities()],
            "coins": self._coins_payload(),
            "boosters": self._boosters_payload(),
        }

    # Tick phases

    def _resolve_pickups(self, now: float) -> None:
        world = self.world
        for entity in world.entities():
            gained = collect_coins(world, entity, self.rng, self.coin_count)
            boosters = collect_boosters(world, entity, now)
            if isinstance(entity, Player) and (gained or boosters):
                touch(entity, now)
                self._dirty.add(entity.persistent_id)
            for booster in boosters:
                logger.info("%s picked up %s", entity.entity_id, booster.name)

    def _resolve_predation(self, now: float) -> None:
        world = self.world
        for event in resolve_predation(world.entities(), now):
            predator, victim = event.predator, event.victim
            for entity in (predator, victim):
                if isinstance(entity, Player):
                    self._dirty.add(entity.persistent_id)
            self._emit(
                "predation",
                {"predatorId": predator.entity_id, "victimId": victim.entity_id, "gained": event.gained},
            )
            if event.victim_emptied:
                self._remove_eaten(victim, now)

    def _remove_eaten(self, victim: MovableEntity, now: float) -> None:
        world = self.world
        release_boosts(world, victim, now)
        payload = {"id": victim.entity_id, "reason": RemovalReason.EATEN.value}
        if not isinstance(victim, Player):
            world.bots.pop(victim.entity_id, None)
            self._emit("entityRemoved", payload)
            return
        self._notify_persistence(
            "record_session_completion",
            victim.persistent_id,
            victim.score,
            {"reason": "eaten", "name": victim.name},
        )
        self._dirty.discard(victim.persistent_id)
        connection_id = victim.connection_id
        remove_player(world, victim)
        logger.info("Player %s was eaten", victim.persistent_id)
        if connection_id is not None:
            self._emit("entityRemoved", payload, connection_id=connection_id)
        self._emit("entityRemoved", payload)

    def _update_boosters(self, dt: float, now: float) -> None:
        world = self.world
        holders: list[MovableEntity] = world.entities()
        holders.extend(entry.player for entry in world.disconnected.values())
        for entity in holders:
            expire_boosts(world, entity, now)
        respawn_due_boosters(world, self.rng, now)
        advance_booster_hue(world, dt)

    def _evict_afk(self, player: Player, now: float) -> None:
        world = self.world
        coins_saved = player.score
        self._notify_persistence(
            "record_session_completion",
            player.persistent_id,
            coins_saved,
            {"reason": "afk", "name": player.name},
        )
        self._dirty.discard(player.persistent_id)
        connection_id = player.connection_id
        remove_player(world, player)
        release_boosts(world, player, now)
        logger.info("Evicted idle player %s with %s coins", player.persistent_id, coins_saved)
        if connection_id is not None:
            self._emit(
                "entityRemoved",
                {"id": player.entity_id, "reason": RemovalReason.AFK.value, "coinsSaved": coins_saved},
                connection_id=connection_id,
                close=True,
            )
        self._emit("entityRemoved", {"id": player.entity_id, "reason": RemovalReason.AFK.value})

    def _churn(self, now: float) -> None:
        world = self.world
        joined, left = churn_bots(world, self.rng, now, self.min_bots, self.max_bots)
        for bot in joined:
            logger.info("Bot %s (%s) joined", bot.name, bot.entity_id)
            self._emit("entityJoined", {"entity": self._entity_full(bot)})
            self._system_line(self.rng.choice(JOIN_LINES).format(name=bot.name), now)
        for bot in left:
            release_boosts(world, bot, now)
            logger.info("Bot %s (%s) left", bot.name, bot.entity_id)
            self._emit("entityRemoved", {"id": bot.entity_id, "reason": RemovalReason.LEFT.value})
            self._system_line(self.rng.choice(LEAVE_LINES).format(name=bot.name), now)

    def _chatter(self, now: float) -> None:
        lines = bot_chatter(self.world, self.rng, now)
        if not self.world.players:
            return
        for bot, line in lines:
            self._emit(
                "chatMessage",
                {
                    "senderId": bot.entity_id,
                    "name": bot.name,
                    "message": line,
                    "isBot": True,
                    "timestamp": now,
                },
            )

    def _system_line(self, message: str, now: float) -> None:
        if not self.world.players:
            return
        self._emit(
            "chatMessage",
            {
                "senderId": SYSTEM_SENDER,
                "name": "System",
                "message": message,
                "isBot": False,
                "timestamp": now,
            },
        )

    # Match transitions

    def _start_match(self, now: float) -> None:
        start_match(self.world, self.rng, now, self.coin_count)
        self._next_redistribution = now + REDISTRIBUTE_SECONDS
        logger.info("Match started, %s seconds left today", self.world.match.time_left)
        self._emit(
            "matchStarted",
            {"timeLeft": self.world.match.time_left, "endOfDay": end_of_utc_day(now)},
        )

    def _end_match(self, now: float) -> None:
        world = self.world
        results = [(p.persistent_id, p.score, p.name) for p in world.players.values()]
        standings = end_match(world, self.rng, now, self.coin_count)
        for pid, score, name in results:
            self._notify_persistence(
                "record_session_completion", pid, score, {"reason": "match_end", "name": name}
            )
            self._dirty.discard(pid)
        self._notify_persistence(
            "record_match_result",
            {
                "ended_at": now,
                "standings": standings,
                "players_count": len(results),
                "bots_count": len(world.bots),
            },
        )
        winner = standings[0]["name"] if standings else None
        logger.info("Match ended, winner %s", winner)
        self._emit(
            "matchEnded",
            {"standings": standings, "nextMatchAt": world.match.next_start_at},
        )

    # Players and persistence

    def _create_player(self, pid: str, name: str | None, color_hue: object) -> Player:
        world = self.world
        if name is None:
            record = self._query_persistence(pid)
            name = (record or {}).get("name") or DEFAULT_NAME
        if (
            isinstance(color_hue, (int, float))
            and not isinstance(color_hue, bool)
            and math.isfinite(color_hue)
        ):
            hue = color_hue % 360
        else:
            hue = self.rng.uniform(0, 360)
        half = world.half - SPAWN_MARGIN
        player = Player(
            entity_id=f"p_{world.next_player_id}",
            name=name,
            x=self.rng.uniform(-half, half),
            y=self.rng.uniform(-half, half),
            color=f"hsl({hue:.0f}, 70%, 50%)",
            persistent_id=pid,
        )
        world.next_player_id += 1
        return player

    def _flush_player(self, player: Player) -> None:
        if player.persistent_id in self._dirty:
            self._dirty.discard(player.persistent_id)
            self._notify_persistence(
                "upsert_player_record",
                player.persistent_id,
                {"score": player.score, "size": player.size, "name": player.name},
            )

    def _flush_stats(self) -> None:
        if not self._dirty:
            return
        for pid in sorted(self._dirty):
            player = self.world.players.get(pid)
            if player is None:
                continue
            self._notify_persistence(
                "upsert_player_record",
                pid,
                {"score": player.score, "size": player.size, "name": player.name},
            )
        self._dirty.clear()

    def _query_persistence(self, pid: str) -> dict | None:
        try:
            return self.persistence.get_player_record(pid)
        except Exception:
            logger.exception("Player record lookup failed for %s", pid)
            return None

    def _notify_persistence(self, method: str, *args: object) -> None:
        try:
            getattr(self.persistence, method)(*args)
        except Exception:
            logger.exception("Persistence call %s failed", method)

    def _emit(
        self,
        event: str,
        payload: dict,
        connection_id: str | None = None,
        close: bool = False,
    ) -> None:
        self._outbox.append(
            Outbound(event=event, payload=payload, connection_id=connection_id, close=close)
        )

    def players_online(self) -> int:
        return len(self.world.players)
