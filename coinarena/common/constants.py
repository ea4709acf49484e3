from __future__ import annotations

# Sizes
MIN_SIZE = 20.0
MAX_SIZE = 50.0
SIZE_PER_SQRT_SCORE = 2.0

# Movement
PLAYER_BASE_SPEED = 200.0  # units/s at multiplier 1.0
BOT_BASE_SPEED = 120.0
PREDATOR_SPEED = 100.0
VELOCITY_SMOOTHING = 8.0
BOT_SPEED_VARIATION = (0.8, 1.2)

# Score -> speed curve, (score, multiplier) at each breakpoint
SPEED_CURVE = (
    (100, 1.00),
    (250, 0.85),
    (500, 0.70),
    (1000, 0.55),
)
SPEED_FLOOR = 0.40

# Coins
COIN_VALUE = 1
COIN_EDGE_MARGIN = 100.0
COIN_MIN_SEPARATION = 30.0
COIN_SPAWN_RETRIES = 10
COIN_JITTER_FRACTION = 0.4
UNIFORM_MEAN_DISTANCE_FACTOR = 0.5214  # mean pairwise distance in a unit square
CLUSTER_THRESHOLD = 0.7
REDISTRIBUTE_FRACTION = 0.2

# Boosters
COIN_MULTIPLIER = 2
COIN_BOOST_SECONDS = 120.0
PREDATOR_BOOST_SECONDS = 60.0
PREDATOR_SIZE_FLOOR = 50.0
BOOSTER_RESPAWN_DELAY = 30.0
BOOSTER_EDGE_MARGIN = 200.0
BOOSTER_HUE_DEGREES_PER_SECOND = 90.0

# Predation
PREDATION_REACH_FACTOR = 0.7
PREDATION_GAIN = 0.1
PREDATION_KEEP = 0.9
PLAYER_EAT_COOLDOWN = 2.0
BOT_EAT_COOLDOWN = 3.0

# Bot AI
HAZARD_RADIUS = 150.0
EDGE_SAFETY_MARGIN = 50.0
PATH_STEP = 20.0
FLEE_DISTANCES = (200.0, 100.0)
DECONFLICT_PROXIMITY_WEIGHT = 1000.0
DECONFLICT_COMPETITOR_PENALTY = 100.0

# Bot population churn
BOT_LEAVE_WINDOW = (60.0, 300.0)
BOT_CHURN_WINDOW = (20.0, 180.0)
BOT_FIRST_CHURN_WINDOW = (5.0, 30.0)
BOT_FORCED_JOIN_AFTER = 120.0
BOT_CHAT_WINDOW = (120.0, 300.0)
BOT_CHAT_PROBABILITY = 0.15

# Periodic sweeps (seconds)
AFK_SWEEP_SECONDS = 30.0
REDISTRIBUTE_SECONDS = 10.0
CLOCK_SYNC_EVERY = 5  # clock ticks

# Input limits
MAX_NAME_LENGTH = 20
MAX_CHAT_LENGTH = 200
MAX_PERSISTENT_ID_LENGTH = 128
