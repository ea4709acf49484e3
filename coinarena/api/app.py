from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Dict, List

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from coinarena.api.models import (
    ChatIntent,
    HealthResponse,
    JoinIntent,
    LeaderboardResponse,
    MoveIntent,
    PlayerRecordResponse,
    SessionRequest,
)
from coinarena.common.config import settings
from coinarena.common.types import Outbound
from coinarena.engine.engine import SimulationEngine, normalize_persistent_id
from coinarena.engine.match import phase
from coinarena.persist.sqlite import SqlitePersistence

app = FastAPI(title="coinarena")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)

SEND_TIMEOUT = 1.0
CLOCK_INTERVAL = 1.0
MAX_TICK_DT = 0.25
LEADERBOARD_FETCH_LIMIT = 100
SHUTDOWN_DRAIN_SECONDS = 1.0

persistence: SqlitePersistence | None = None
engine: SimulationEngine | None = None
engine_lock = asyncio.Lock()

INTENT_MODELS: Dict[str, type[BaseModel]] = {
    "join": JoinIntent,
    "move": MoveIntent,
    "chat": ChatIntent,
}


@dataclass
class ClientConnection:
    ws: WebSocket
    queue: asyncio.Queue[Dict[str, object] | None]
    task: asyncio.Task | None = None


clients: Dict[str, ClientConnection] = {}
background_tasks: List[asyncio.Task] = []

# Leaderboard cache (delayed/batched reads)
leaderboard_cache: Dict[str, object] = {"data": [], "timestamp": 0}
leaderboard_lock = asyncio.Lock()


def _get_engine() -> SimulationEngine:
    assert engine is not None
    return engine


def _get_persistence() -> SqlitePersistence:
    assert persistence is not None
    return persistence


@app.on_event("startup")
async def _startup() -> None:
    global persistence, engine
    persistence = SqlitePersistence(settings.db_path)
    engine = SimulationEngine(
        persistence,
        seed=settings.random_seed,
        world_size=settings.world_size,
        coin_count=settings.coin_count,
        initial_bots=settings.initial_bots,
        min_bots=settings.min_bots,
        max_bots=settings.max_bots,
        max_players=settings.max_players,
        afk_timeout=settings.afk_timeout_seconds,
        reconnect_grace=settings.reconnect_grace_seconds,
        broadcast_every=settings.broadcast_every,
    )
    logger.info(
        "Arena ready: %s coins, %s bots", len(engine.world.coins), len(engine.world.bots)
    )
    if settings.enable_tick_loop:
        background_tasks.append(asyncio.create_task(tick_loop()))
        background_tasks.append(asyncio.create_task(clock_loop()))
    else:
        logger.warning("Tick loop disabled via COINARENA_ENABLE_TICK_LOOP")


@app.on_event("shutdown")
async def _shutdown() -> None:
    if engine is not None:
        async with engine_lock:
            engine.shutdown_notice(time.time())
            messages = engine.drain_outbox()
        dispatch_outbound(messages)
        senders = []
        for client in list(clients.values()):
            _enqueue_close(client)
            if client.task is not None:
                senders.append(client.task)
        if senders:
            await asyncio.wait(senders, timeout=SHUTDOWN_DRAIN_SECONDS)
    for task in background_tasks:
        task.cancel()
    background_tasks.clear()
    if persistence is not None:
        persistence.close()


async def tick_loop() -> None:
    game_engine = _get_engine()
    interval = 1.0 / settings.tick_rate
    last = time.monotonic()
    while True:
        started = time.monotonic()
        dt = min(started - last, MAX_TICK_DT)
        last = started
        try:
            async with engine_lock:
                game_engine.tick_once(dt, time.time())
                messages = game_engine.drain_outbox()
            dispatch_outbound(messages)
        except Exception:
            logger.exception("Tick failed")
        elapsed = time.monotonic() - started
        await asyncio.sleep(max(0.0, interval - elapsed))


async def clock_loop() -> None:
    game_engine = _get_engine()
    while True:
        await asyncio.sleep(CLOCK_INTERVAL)
        try:
            async with engine_lock:
                game_engine.update_match_clock(time.time())
                messages = game_engine.drain_outbox()
            dispatch_outbound(messages)
        except Exception:
            logger.exception("Match clock update failed")


def _enqueue(connection_id: str, client: ClientConnection, frame: Dict[str, object]) -> None:
    try:
        client.queue.put_nowait(frame)
    except asyncio.QueueFull:
        logger.warning("Outbound queue full for %s, dropping %s", connection_id, frame["type"])


def _enqueue_close(client: ClientConnection) -> None:
    try:
        client.queue.put_nowait(None)
    except asyncio.QueueFull:
        try:
            client.queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        try:
            client.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


def dispatch_outbound(messages: List[Outbound]) -> None:
    """Fan engine messages out to per-client queues; never awaits the network."""
    for message in messages:
        frame: Dict[str, object] = {"type": message.event, **message.payload}
        if message.connection_id is None:
            targets = list(clients.items())
        else:
            client = clients.get(message.connection_id)
            targets = [(message.connection_id, client)] if client else []
        for connection_id, client in targets:
            _enqueue(connection_id, client, frame)
            if message.close:
                _enqueue_close(client)


async def _client_sender(connection_id: str, client: ClientConnection) -> None:
    while True:
        try:
            frame = await client.queue.get()
        except asyncio.CancelledError:
            break
        if frame is None:
            try:
                await client.ws.close()
            except Exception:
                logger.exception("Failed to close websocket %s", connection_id)
            break
        try:
            await asyncio.wait_for(client.ws.send_json(frame), timeout=SEND_TIMEOUT)
        except Exception:
            logger.exception("Failed to send %s to %s", frame.get("type"), connection_id)
            break


async def _handle_frame(connection_id: str, data: object) -> None:
    if not isinstance(data, dict):
        return
    kind = data.get("type")
    if not isinstance(kind, str):
        return
    now = time.time()
    if kind == "ping":
        client = clients.get(connection_id)
        if client is not None:
            _enqueue(connection_id, client, {"type": "pong", "serverTime": now})
        return
    model = INTENT_MODELS.get(kind)
    intent = None
    if model is not None:
        try:
            intent = model.model_validate(data)
        except ValidationError:
            logger.debug("Dropped malformed %s frame from %s", kind, connection_id)
            return
    elif kind != "requestNewGame":
        return

    game_engine = _get_engine()
    async with engine_lock:
        if isinstance(intent, JoinIntent):
            game_engine.join(connection_id, intent.name, intent.color, intent.playerId, now)
        elif isinstance(intent, MoveIntent):
            game_engine.move(connection_id, (intent.x, intent.y), now)
        elif isinstance(intent, ChatIntent):
            game_engine.chat(connection_id, intent.message, now)
        elif game_engine.world.player_for_connection(connection_id) is not None:
            game_engine.request_new_match(now)
        messages = game_engine.drain_outbox()
    dispatch_outbound(messages)


@app.websocket("/ws")
async def game_ws(ws: WebSocket) -> None:
    await ws.accept()
    connection_id = str(uuid.uuid4())
    client = ClientConnection(ws=ws, queue=asyncio.Queue(maxsize=settings.outbound_queue_size))
    client.task = asyncio.create_task(_client_sender(connection_id, client))
    clients[connection_id] = client
    try:
        while True:
            try:
                raw = await ws.receive_text()
            except WebSocketDisconnect:
                break
            except Exception:
                logger.exception("Websocket receive failed for %s", connection_id)
                break
            try:
                data = json.loads(raw)
            except ValueError:
                continue
            await _handle_frame(connection_id, data)
    finally:
        clients.pop(connection_id, None)
        if engine is not None:
            async with engine_lock:
                engine.disconnect(connection_id, time.time())
                messages = engine.drain_outbox()
            dispatch_outbound(messages)
        client.task.cancel()


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    game_engine = _get_engine()
    async with engine_lock:
        world = game_engine.world
        return HealthResponse(
            status="ok",
            tick=world.tick,
            players=len(world.players),
            bots=len(world.bots),
            phase=phase(world.match).value,
            time_left=world.match.time_left,
        )


@app.get("/api/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    limit: int = Query(default=10, ge=1, le=LEADERBOARD_FETCH_LIMIT),
) -> LeaderboardResponse:
    store = _get_persistence()
    async with leaderboard_lock:
        now = int(time.time())
        if now - int(leaderboard_cache["timestamp"]) > settings.leaderboard_cache_seconds:
            leaderboard_cache["data"] = store.list_leaderboard(LEADERBOARD_FETCH_LIMIT)
            leaderboard_cache["timestamp"] = now
        entries = leaderboard_cache["data"]
    return LeaderboardResponse(entries=entries[:limit])


@app.get("/api/player/{player_id}", response_model=PlayerRecordResponse)
async def player_record(player_id: str) -> PlayerRecordResponse:
    pid = normalize_persistent_id(player_id)
    if pid is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid player id")
    record = _get_persistence().get_player_record(pid)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown player")
    return PlayerRecordResponse(**record)


@app.post("/api/player/{player_id}/session")
async def record_session(player_id: str, req: SessionRequest) -> Dict[str, str]:
    pid = normalize_persistent_id(player_id)
    if pid is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid player id")
    _get_persistence().record_session_completion(
        pid, req.score, {"reason": req.reason, "name": req.name}
    )
    return {"status": "ok"}


@app.get("/api/matches")
async def recent_matches(limit: int = Query(default=10, ge=1, le=50)) -> Dict[str, object]:
    return {"matches": _get_persistence().recent_matches(limit)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
