import math

from coinarena.engine.bots import create_bot
from coinarena.engine.engine import SimulationEngine
from coinarena.persist.base import Persistence

START = 1_700_000_000.0
DT = 1 / 60


class DummyPersist(Persistence):
    def __init__(self) -> None:
        self.sessions = []
        self.upserts = []

    def get_player_record(self, player_id: str):
        return None

    def upsert_player_record(self, player_id: str, deltas: dict) -> None:
        self.upserts.append((player_id, dict(deltas)))

    def record_session_completion(self, player_id: str, final_score: int, meta: dict) -> None:
        self.sessions.append((player_id, final_score, meta["reason"]))

    def list_leaderboard(self, limit: int = 10):
        return []

    def record_match_result(self, result: dict) -> None:
        pass


class BrokenPersist(DummyPersist):
    def upsert_player_record(self, player_id: str, deltas: dict) -> None:
        raise RuntimeError("store unavailable")


def test_entities_stay_in_bounds_and_coins_constant():
    engine = SimulationEngine(
        DummyPersist(), seed=7, world_size=600.0, coin_count=50, initial_bots=8, now=START
    )
    engine.join("c1", "Ann", 30, "ann", START)
    half = engine.world.half

    now = START
    for i in range(1500):
        now += DT
        if i % 100 == 0:
            engine.move("c1", (1.0, 1.0) if i % 200 == 0 else (-1.0, 0.5), now)
        engine.tick_once(DT, now)
        assert len(engine.world.coins) == 50
        for entity in engine.world.entities():
            assert -half <= entity.x <= half
            assert -half <= entity.y <= half
            assert entity.score >= 0
            assert 20.0 <= entity.size <= 50.0
        engine.drain_outbox()


def test_delta_update_cadence_and_shape():
    engine = SimulationEngine(
        DummyPersist(), seed=3, coin_count=10, initial_bots=2, broadcast_every=3, now=START
    )
    engine.join("c1", "Ann", 30, "ann", START)
    engine.drain_outbox()

    deltas = []
    for i in range(1, 10):
        engine.tick_once(DT, START + i * DT)
        deltas.extend(m for m in engine.drain_outbox() if m.event == "deltaUpdate")

    assert len(deltas) == 3
    payload = deltas[0].payload
    assert deltas[0].connection_id is None
    assert set(payload) == {"tick", "serverTime", "entities", "coins", "boosters"}
    assert len(payload["entities"]) == 3
    entity = payload["entities"][0]
    assert set(entity) == {"id", "x", "y", "vx", "vy", "score", "size", "coinBoost", "predator"}
    assert isinstance(entity["x"], int)
    assert all(len(coin) == 3 for coin in payload["coins"])


def test_world_snapshot_on_join():
    engine = SimulationEngine(DummyPersist(), seed=3, coin_count=10, initial_bots=2, now=START)

    player = engine.join("c1", "  Ann  ", 30, "ann", START)

    snapshots = [m for m in engine.drain_outbox() if m.event == "worldSnapshot"]
    assert len(snapshots) == 1
    snapshot = snapshots[0].payload
    assert snapshots[0].connection_id == "c1"
    assert snapshot["selfId"] == player.entity_id
    assert snapshot["worldSize"] == 4000.0
    assert [p["name"] for p in snapshot["players"]] == ["Ann"]
    assert len(snapshot["bots"]) == 2
    assert len(snapshot["coins"]) == 10
    assert len(snapshot["boosters"]) == 2
    assert snapshot["match"]["phase"] == "running"


def test_invalid_intents_are_dropped():
    engine = SimulationEngine(DummyPersist(), seed=3, coin_count=10, initial_bots=0, now=START)
    assert not engine.move("nobody", (1.0, 0.0), START)
    player = engine.join("c1", "Ann", 30, "ann", START)
    engine.drain_outbox()

    for bad in ((2.0, 0.0), (float("nan"), 0.0), (True, 0.0), "left", (0.5,)):
        assert not engine.move("c1", bad, START)
    assert (player.intent_x, player.intent_y) == (0.0, 0.0)

    assert not engine.chat("c1", "   ", START)
    assert not engine.chat("c1", 42, START)
    assert engine.drain_outbox() == []

    assert engine.chat("c1", "x" * 500, START)
    message = engine.drain_outbox()[0]
    assert message.event == "chatMessage"
    assert len(message.payload["message"]) == 200


def test_move_ignored_while_match_not_running():
    engine = SimulationEngine(DummyPersist(), seed=3, coin_count=10, initial_bots=0, now=START)
    player = engine.join("c1", "Ann", 30, "ann", START)
    engine.world.match.started = False
    engine.world.match.ended = True

    assert not engine.move("c1", (1.0, 0.0), START)
    assert player.intent_x == 0.0


def test_emptied_bot_removed_by_predator_player():
    engine = SimulationEngine(DummyPersist(), seed=3, coin_count=0, initial_bots=0, now=START)
    engine.world.boosters.clear()
    player = engine.join("c1", "Ann", 30, "ann", START)
    player.predator_until = START + 60
    bot = create_bot(engine.world, engine.rng, START)
    bot.x, bot.y, bot.score = player.x, player.y, 1
    engine.drain_outbox()

    engine.tick_once(DT, START + DT)

    assert bot.entity_id not in engine.world.bots
    messages = engine.drain_outbox()
    events = [m.event for m in messages]
    assert "predation" in events
    removed = [m for m in messages if m.event == "entityRemoved"]
    assert removed[0].payload == {"id": bot.entity_id, "reason": "eaten"}


def test_emptied_player_removed_and_session_finalised():
    persist = DummyPersist()
    engine = SimulationEngine(persist, seed=3, coin_count=0, initial_bots=0, now=START)
    engine.world.boosters.clear()
    victim = engine.join("c1", "Ann", 30, "ann", START)
    hunter = engine.join("c2", "Bob", 30, "bob", START)
    hunter.x, hunter.y = victim.x, victim.y
    hunter.predator_until = START + 60
    victim.score = 1
    engine.drain_outbox()

    engine.tick_once(DT, START + DT)

    assert "ann" not in engine.world.players
    assert ("ann", 0, "eaten") in persist.sessions
    direct = [m for m in engine.drain_outbox() if m.connection_id == "c1"]
    assert direct[0].event == "entityRemoved"
    assert direct[0].payload["reason"] == "eaten"


def test_dirty_stats_flushed_with_absolute_values():
    persist = DummyPersist()
    engine = SimulationEngine(persist, seed=3, coin_count=0, initial_bots=0, now=START)
    engine.world.boosters.clear()
    player = engine.join("c1", "Ann", 30, "ann", START)

    engine.tick_once(DT, START + DT)
    assert persist.upserts == [("ann", {"score": 0, "size": 20.0, "name": "Ann"})]

    engine.tick_once(DT, START + 2 * DT)
    assert len(persist.upserts) == 1
    assert math.isclose(player.size, 20.0)


def test_persistence_failure_does_not_stop_tick():
    engine = SimulationEngine(BrokenPersist(), seed=3, coin_count=10, initial_bots=1, now=START)
    engine.join("c1", "Ann", 30, "ann", START)

    engine.tick_once(DT, START + DT)

    assert engine.world.tick == 1
    assert "ann" in engine.world.players


def test_shutdown_notice_is_broadcast():
    engine = SimulationEngine(DummyPersist(), seed=3, coin_count=10, initial_bots=0, now=START)
    engine.shutdown_notice(START)
    messages = engine.drain_outbox()
    assert [m.event for m in messages] == ["serverShutdown"]
    assert messages[0].connection_id is None


def test_zero_score_player_survives_predator_contact():
    engine = SimulationEngine(DummyPersist(), seed=3, coin_count=0, initial_bots=0, now=START)
    engine.world.boosters.clear()
    player = engine.join("c1", "Ann", 30, "ann", START)
    bot = create_bot(engine.world, engine.rng, START)
    bot.x, bot.y = player.x, player.y
    bot.predator_until = START + 60
    engine.drain_outbox()

    engine.tick_once(DT, START + DT)

    assert "ann" in engine.world.players
    assert player.score == 0
    assert "predation" not in [m.event for m in engine.drain_outbox()]
