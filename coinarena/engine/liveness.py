from __future__ import annotations

from coinarena.engine.state import DisconnectedPlayer, Player, WorldState


def touch(player: Player, now: float) -> None:
    player.last_activity = now


def find_afk(world: WorldState, now: float, timeout: float) -> list[Player]:
    return [p for p in world.players.values() if now - p.last_activity > timeout]


def bind_connection(world: WorldState, player: Player, connection_id: str) -> str | None:
    """Attach a player to a connection; returns the connection it displaced."""
    previous = player.connection_id
    if previous is not None and previous != connection_id:
        world.connections.pop(previous, None)
    else:
        previous = None
    player.connection_id = connection_id
    world.connections[connection_id] = player.persistent_id
    world.players[player.persistent_id] = player
    return previous


def park_disconnected(world: WorldState, player: Player, now: float) -> None:
    """Move a player out of the roster into the reconnection pool."""
    world.players.pop(player.persistent_id, None)
    if player.connection_id is not None:
        world.connections.pop(player.connection_id, None)
    player.connection_id = None
    player.intent_x = player.intent_y = 0.0
    player.vx = player.vy = 0.0
    world.disconnected[player.persistent_id] = DisconnectedPlayer(
        player=player, disconnected_at=now
    )


def reclaim(world: WorldState, persistent_id: str, now: float, grace: float) -> Player | None:
    """Pop a parked player if still inside the grace window.

    A record found outside the window is discarded.
    """
    entry = world.disconnected.pop(persistent_id, None)
    if entry is None:
        return None
    if now - entry.disconnected_at > grace:
        return None
    return entry.player


def expire_disconnected(world: WorldState, now: float, grace: float) -> list[Player]:
    expired: list[Player] = []
    for persistent_id, entry in list(world.disconnected.items()):
        if now - entry.disconnected_at > grace:
            del world.disconnected[persistent_id]
            expired.append(entry.player)
    return expired


def remove_player(world: WorldState, player: Player) -> None:
    world.players.pop(player.persistent_id, None)
    if player.connection_id is not None:
        world.connections.pop(player.connection_id, None)
