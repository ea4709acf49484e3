import math

import pytest

from coinarena.engine.movement import (
    clamp_to_world,
    integrate_player,
    max_speed,
    normalize_intent,
    refresh_size,
    size_for_score,
    speed_multiplier,
    steer_towards,
)
from coinarena.engine.state import Bot, Player


def _player(**kwargs) -> Player:
    fields = dict(entity_id="p_0", name="A", x=0.0, y=0.0, color="hsl(0, 70%, 50%)")
    fields.update(kwargs)
    return Player(persistent_id="a", **fields)


def test_speed_curve_breakpoints():
    assert speed_multiplier(0) == 1.0
    assert speed_multiplier(100) == 1.0
    assert speed_multiplier(175) == pytest.approx(0.925)
    assert speed_multiplier(250) == pytest.approx(0.85)
    assert speed_multiplier(500) == pytest.approx(0.70)
    assert speed_multiplier(750) == pytest.approx(0.625)
    assert speed_multiplier(1000) == pytest.approx(0.55)
    assert speed_multiplier(1001) == 0.40
    assert speed_multiplier(50000) == 0.40


def test_speed_curve_is_monotonic():
    previous = speed_multiplier(0)
    for score in range(0, 1500, 7):
        current = speed_multiplier(score)
        assert current <= previous + 1e-12
        previous = current


def test_max_speed_does_not_compound():
    player = _player(score=300)
    first = max_speed(player, 200.0)
    second = max_speed(player, 200.0)
    assert first == second == pytest.approx(200.0 * 0.82)


def test_integrated_velocity_converges_to_curve_speed():
    player = _player(score=300)
    player.intent_x = 1.0
    for _ in range(200):
        integrate_player(player, 1 / 60, 100000.0)
    assert player.vx == pytest.approx(164.0)
    assert player.vy == pytest.approx(0.0)


def test_predator_speed_is_pinned():
    player = _player(score=5000, predator_until=60.0)
    assert max_speed(player, 200.0) == 100.0
    player.predator_until = None
    assert max_speed(player, 200.0) == pytest.approx(80.0)


def test_size_from_score():
    assert size_for_score(0) == 20.0
    assert size_for_score(1) == 22.0
    assert size_for_score(100) == 40.0
    assert size_for_score(225) == 50.0
    assert size_for_score(10000) == 50.0


def test_predator_size_floor_and_restore():
    player = _player(score=4, predator_until=60.0)
    refresh_size(player)
    assert player.size == 50.0
    player.predator_until = None
    refresh_size(player)
    assert player.size == 24.0


def test_normalize_intent():
    assert normalize_intent((0.3, 0.4)) == (0.3, 0.4)
    assert normalize_intent([0, -1]) == (0.0, -1.0)
    x, y = normalize_intent((1, 1))
    assert x == pytest.approx(math.sqrt(0.5))
    assert y == pytest.approx(math.sqrt(0.5))
    assert normalize_intent((2, 0)) is None
    assert normalize_intent((float("nan"), 0)) is None
    assert normalize_intent((float("inf"), 0)) is None
    assert normalize_intent((True, 0)) is None
    assert normalize_intent(("0.5", 0)) is None
    assert normalize_intent((0.5,)) is None
    assert normalize_intent("up") is None


def test_clamp_to_world():
    assert clamp_to_world(3000.0, -3000.0, 4000.0) == (2000.0, -2000.0)
    assert clamp_to_world(10.0, 20.0, 4000.0) == (10.0, 20.0)


def test_player_stops_at_world_edge():
    player = _player(x=1990.0)
    player.intent_x = 1.0
    for _ in range(120):
        integrate_player(player, 1 / 60, 4000.0)
    assert player.x == 2000.0


def test_steer_towards_never_overshoots():
    bot = Bot(entity_id="bot_0", name="B", x=0.0, y=0.0, color="c")
    steer_towards(bot, 100.0, 0.0, 120.0, 0.5, 4000.0)
    assert bot.x == pytest.approx(60.0)
    assert bot.vx == pytest.approx(120.0)
    steer_towards(bot, 100.0, 0.0, 120.0, 2.0, 4000.0)
    assert bot.x == pytest.approx(100.0)
    steer_towards(bot, 100.0, 0.0, 120.0, 2.0, 4000.0)
    assert (bot.vx, bot.vy) == (0.0, 0.0)
