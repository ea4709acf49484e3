from coinarena.engine.predation import can_eat, resolve_predation
from coinarena.engine.state import Bot, Player


def _bot(entity_id: str, x: float = 0.0, y: float = 0.0, **kwargs) -> Bot:
    return Bot(entity_id=entity_id, name=entity_id, x=x, y=y, color="c", **kwargs)


def _player(pid: str, x: float = 0.0, y: float = 0.0, **kwargs) -> Player:
    return Player(
        entity_id=f"p_{pid}", name=pid, x=x, y=y, color="c", persistent_id=pid, **kwargs
    )


def test_bite_transfers_tenth_and_respects_cooldown():
    predator = _bot("bot_p", predator_until=100.0)
    victim = _player("v", x=10.0, score=200)

    events = resolve_predation([predator, victim], now=10.0)

    assert len(events) == 1
    assert events[0].gained == 20
    assert predator.score == 20
    assert victim.score == 180

    assert resolve_predation([predator, victim], now=11.0) == []
    assert victim.score == 180

    events = resolve_predation([predator, victim], now=13.0)
    assert len(events) == 1
    assert victim.score == 162
    assert predator.score == 38


def test_player_cooldown_is_two_seconds():
    predator = _player("h", predator_until=100.0)
    victim = _bot("bot_v", x=5.0, score=50)

    assert len(resolve_predation([predator, victim], now=10.0)) == 1
    assert resolve_predation([predator, victim], now=11.9) == []
    assert len(resolve_predation([predator, victim], now=12.0)) == 1


def test_no_predation_without_boost_or_contact():
    plain = _player("a", score=500)
    victim = _bot("bot_v", x=5.0, score=50)
    assert not can_eat(plain, 10.0)
    assert resolve_predation([plain, victim], now=10.0) == []

    hunter = _player("h", predator_until=100.0)
    distant = _bot("bot_far", x=29.0, score=50)
    assert resolve_predation([hunter, distant], now=10.0) == []


def test_one_victim_per_predator_per_window():
    predator = _bot("bot_p", predator_until=100.0)
    first = _player("a", x=5.0, score=100)
    second = _player("b", x=-5.0, score=100)

    events = resolve_predation([predator, first, second], now=10.0)

    assert len(events) == 1
    assert events[0].victim is first
    assert second.score == 100


def test_emptied_victim_is_not_bitten_twice():
    one = _bot("bot_1", predator_until=100.0)
    two = _player("h", x=40.0, predator_until=100.0)
    victim = _bot("bot_v", x=20.0, score=1)

    events = resolve_predation([one, two, victim], now=10.0)

    assert len(events) == 1
    assert events[0].victim is victim
    assert events[0].victim_emptied
    assert events[0].gained == 0
    assert victim.score == 0
