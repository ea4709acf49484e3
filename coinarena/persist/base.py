from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List


class Persistence(ABC):
    """Player record store consumed by the simulation.

    Implementations must not block the caller on writes and must tolerate
    repeated calls with the same arguments.
    """

    @abstractmethod
    def get_player_record(self, player_id: str) -> Dict | None:
        raise NotImplementedError

    @abstractmethod
    def upsert_player_record(self, player_id: str, deltas: dict) -> None:
        raise NotImplementedError

    @abstractmethod
    def record_session_completion(self, player_id: str, final_score: int, meta: dict) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_leaderboard(self, limit: int = 10) -> List[Dict]:
        raise NotImplementedError

    @abstractmethod
    def record_match_result(self, result: dict) -> None:
        raise NotImplementedError
