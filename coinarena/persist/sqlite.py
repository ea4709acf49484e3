from __future__ import annotations

import json
import logging
import queue
import sqlite3
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from coinarena.persist.base import Persistence

logger = logging.getLogger(__name__)

PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)

WriteFn = Callable[[sqlite3.Connection], object]


def _normalize_id(player_id: str) -> str:
    return player_id.strip().lower()


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    for pragma in PRAGMAS:
        conn.execute(pragma)
    return conn


@dataclass
class _PendingWrite:
    fn: WriteFn
    done: threading.Event = field(default_factory=threading.Event)
    result: object = None
    error: Exception | None = None


class SqlitePersistence(Persistence):
    """Player records and match history in SQLite.

    Reads use a per-thread connection. Every write is funnelled through one
    writer thread so callers on the event loop never wait on disk unless they
    ask to.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._local = threading.local()
        self._init_db()
        self._pending: queue.Queue[_PendingWrite | None] = queue.Queue()
        self._closed = threading.Event()
        self._writer = threading.Thread(
            target=self._drain_writes, name="arena-db-writer", daemon=True
        )
        self._writer.start()

    def _drain_writes(self) -> None:
        conn = _connect(self.db_path)
        try:
            while True:
                pending = self._pending.get()
                if pending is None:
                    self._pending.task_done()
                    return
                try:
                    pending.result = pending.fn(conn)
                    conn.commit()
                except Exception as exc:
                    conn.rollback()
                    pending.error = exc
                    logger.exception("Arena db write failed")
                finally:
                    pending.done.set()
                    self._pending.task_done()
        finally:
            conn.close()

    def _run_write(self, fn: WriteFn, wait: bool = True):
        if self._closed.is_set():
            raise RuntimeError("Persistence is closed")
        pending = _PendingWrite(fn)
        self._pending.put(pending)
        if not wait:
            return None
        pending.done.wait()
        if pending.error is not None:
            raise pending.error
        return pending.result

    def flush(self) -> None:
        """Block until every queued write has been committed."""
        self._pending.join()

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.execute("""
                CREATE TABLE IF NOT EXISTS players (
                    player_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    current_score INTEGER NOT NULL DEFAULT 0,
                    last_size REAL,
                    best_score INTEGER NOT NULL DEFAULT 0,
                    total_coins INTEGER NOT NULL DEFAULT 0,
                    games_played INTEGER NOT NULL DEFAULT 0,
                    first_played INTEGER NOT NULL,
                    last_played INTEGER NOT NULL
                )
                """)
        conn.execute("""
                CREATE TABLE IF NOT EXISTS matches (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ended_at INTEGER NOT NULL,
                    winner TEXT,
                    players_count INTEGER NOT NULL DEFAULT 0,
                    bots_count INTEGER NOT NULL DEFAULT 0,
                    standings TEXT NOT NULL
                )
                """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_players_best ON players(best_score)")
        conn.commit()

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = _connect(self.db_path)
            self._local.conn = conn
        return conn

    def close(self) -> None:
        self.flush()
        self._closed.set()
        self._pending.put(None)
        self._writer.join(timeout=2)
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def _ensure_row(self, conn: sqlite3.Connection, player_id: str, now: int) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO players(player_id, first_played, last_played) VALUES (?,?,?)",
            (player_id, now, now),
        )

    def get_player_record(self, player_id: str) -> dict | None:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT player_id, name, current_score, last_size, best_score, total_coins, "
            "games_played, first_played, last_played FROM players WHERE player_id = ?",
            (_normalize_id(player_id),),
        ).fetchone()
        if not row:
            return None
        return {
            "player_id": row[0],
            "name": row[1],
            "current_score": row[2],
            "last_size": row[3],
            "best_score": row[4],
            "total_coins": row[5],
            "games_played": row[6],
            "first_played": row[7],
            "last_played": row[8],
        }

    def upsert_player_record(self, player_id: str, deltas: dict) -> None:
        """Store the latest in-game score/size/name. Values are absolute."""
        pid = _normalize_id(player_id)
        now = int(time.time())
        score = deltas.get("score")
        size = deltas.get("size")
        name = deltas.get("name")

        def _task(conn: sqlite3.Connection) -> None:
            self._ensure_row(conn, pid, now)
            if score is not None:
                conn.execute(
                    "UPDATE players SET current_score = ?, best_score = MAX(best_score, ?) "
                    "WHERE player_id = ?",
                    (int(score), int(score), pid),
                )
            if size is not None:
                conn.execute(
                    "UPDATE players SET last_size = ? WHERE player_id = ?", (float(size), pid)
                )
            if name:
                conn.execute("UPDATE players SET name = ? WHERE player_id = ?", (str(name), pid))
            conn.execute("UPDATE players SET last_played = ? WHERE player_id = ?", (now, pid))

        self._run_write(_task, wait=False)

    def record_session_completion(self, player_id: str, final_score: int, meta: dict) -> None:
        pid = _normalize_id(player_id)
        now = int(time.time())
        score = max(0, int(final_score))
        name = meta.get("name")

        def _task(conn: sqlite3.Connection) -> None:
            self._ensure_row(conn, pid, now)
            conn.execute(
                "UPDATE players SET games_played = games_played + 1, "
                "total_coins = total_coins + ?, best_score = MAX(best_score, ?), "
                "current_score = 0, last_played = ? WHERE player_id = ?",
                (score, score, now, pid),
            )
            if name:
                conn.execute("UPDATE players SET name = ? WHERE player_id = ?", (str(name), pid))

        self._run_write(_task, wait=False)

    def list_leaderboard(self, limit: int = 10) -> list[dict]:
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT player_id, name, best_score, total_coins, games_played FROM players "
            "ORDER BY best_score DESC, total_coins DESC LIMIT ?",
            (max(0, int(limit)),),
        ).fetchall()
        return [
            {
                "player_id": r[0],
                "name": r[1] or r[0],
                "best_score": r[2],
                "total_coins": r[3],
                "games_played": r[4],
            }
            for r in rows
        ]

    def record_match_result(self, result: dict) -> None:
        ended_at = int(result.get("ended_at") or time.time())
        standings = result.get("standings", [])
        winner = standings[0]["name"] if standings else None
        payload = json.dumps(standings, separators=(",", ":"))
        players_count = int(result.get("players_count", 0))
        bots_count = int(result.get("bots_count", 0))

        def _task(conn: sqlite3.Connection) -> None:
            conn.execute(
                "INSERT INTO matches(ended_at, winner, players_count, bots_count, standings) "
                "VALUES (?, ?, ?, ?, ?)",
                (ended_at, winner, players_count, bots_count, payload),
            )

        self._run_write(_task, wait=False)

    def recent_matches(self, limit: int = 10) -> list[dict]:
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT ended_at, winner, players_count, bots_count, standings FROM matches "
            "ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            {
                "ended_at": r[0],
                "winner": r[1],
                "players_count": r[2],
                "bots_count": r[3],
                "standings": json.loads(r[4]),
            }
            for r in rows
        ]
