from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple

Point = Tuple[float, float]
Vector = Tuple[float, float]


class BoosterKind(str, Enum):
    COIN_MULTIPLIER = "coin_multiplier"
    PREDATOR = "predator"


class MatchPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ENDED = "ended"


class RemovalReason(str, Enum):
    EATEN = "eaten"
    AFK = "afk"
    REPLACED = "replaced"
    DISCONNECTED = "disconnected"
    LEFT = "left"


@dataclass(frozen=True)
class Outbound:
    """A message queued by the engine for the transport layer.

    ``connection_id`` of None means broadcast to every connected client.
    """

    event: str
    payload: Dict[str, Any] = field(default_factory=dict)
    connection_id: str | None = None
    close: bool = False
