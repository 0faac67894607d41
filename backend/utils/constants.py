"""
Constants used across the pairing, box league and rating system.
"""

# Rating constants (DUPR-style 2.0 - 8.0 scale)
DEFAULT_RATING = 3.5  # Starting rating for new players
MIN_RATING = 2.0
MAX_RATING = 8.0
RATING_K_FACTOR = 0.08  # Conservative factor for the small rating range
RATING_SCALE = 2.0  # Logistic scale tuned to the 2.0 - 8.0 range

# Score margin multiplier
MARGIN_BASE_MULTIPLIER = 0.7  # 1-point margin
MARGIN_STEP = 0.075  # Added per extra point of margin
MARGIN_MIN_MULTIPLIER = 0.5
MARGIN_MAX_MULTIPLIER = 1.5

# Doubles performance multiplier (player vs own team average)
PERFORMANCE_WEIGHT = 0.25
PERFORMANCE_MIN_MULTIPLIER = 0.7
PERFORMANCE_MAX_MULTIPLIER = 1.3

# Match formats
SINGLES = "singles"
DOUBLES = "doubles"
TEAM_SIZE = {SINGLES: 1, DOUBLES: 2}
MIN_PLAYERS = {SINGLES: 2, DOUBLES: 4}

# Quick play
DEFAULT_COURTS = 2

# Greedy fallback scoring weights (higher score is better)
DOUBLES_PARTNERSHIP_BASE = 100
DOUBLES_PARTNERSHIP_PENALTY = 15
DOUBLES_OPPOSITION_BASE = 50
DOUBLES_OPPOSITION_PENALTY = 10
DOUBLES_GAMES_BASE = 30
DOUBLES_GAMES_PENALTY = 3
SINGLES_BALANCE_BASE = 100
SINGLES_GAMES_PENALTY = 5
SINGLES_OPPOSITION_BASE = 50
SINGLES_OPPOSITION_PENALTY = 20

# Box leagues
BOX_SIZE = 4
DEFAULT_ROUNDS_PER_CYCLE = 3
BOX_POINTS_PER_WIN = 1
