from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt


class JoinIntent(BaseModel):
    name: Optional[str] = None
    color: Optional[float] = None
    playerId: str


class MoveIntent(BaseModel):
    x: Union[StrictInt, StrictFloat]
    y: Union[StrictInt, StrictFloat]


class ChatIntent(BaseModel):
    message: str


class SessionRequest(BaseModel):
    score: int = Field(ge=0)
    name: Optional[str] = Field(default=None, max_length=20)
    reason: str = "client"


class LeaderboardEntry(BaseModel):
    player_id: str
    name: str
    best_score: int
    total_coins: int
    games_played: int


class LeaderboardResponse(BaseModel):
    entries: List[LeaderboardEntry]


class PlayerRecordResponse(BaseModel):
    player_id: str
    name: str
    current_score: int
    last_size: Optional[float] = None
    best_score: int
    total_coins: int
    games_played: int
    first_played: int
    last_played: int


class HealthResponse(BaseModel):
    status: str
    tick: int
    players: int
    bots: int
    phase: str
    time_left: int
