"""
Game constants for the Farm Minigame.
Growth is real-time: durations are wall-clock milliseconds since planting.
"""

MINUTE_MS = 60 * 1000

# Crop definitions: growth_ms = time from planting to the harvestable stage
CROPS = {
    "wheat": {
        "name": "Wheat",
        "seed_cost": 2,
        "reward": 20,
        "growth_ms": 12 * MINUTE_MS,
        "requires": None,
    },
    "beet": {
        "name": "Beet",
        "seed_cost": 3,
        "reward": 25,
        "growth_ms": 15 * MINUTE_MS,
        "requires": "beet_seeds",
    },
}

# Growth stages: 0..4 growing, 5 harvestable
STAGE_COUNT = 5
HARVESTABLE_STAGE = STAGE_COUNT

# Slot pools. Premium slots start at a larger base offset so the pool is
# derivable from the slot value alone.
DEFAULT_POOL = "default"
PREMIUM_POOL = "premium"
DEFAULT_SLOT_BASE = 0
DEFAULT_SLOT_COUNT = 6
PREMIUM_SLOT_BASE = 100
PREMIUM_SLOT_COUNT = 3
PREMIUM_UNLOCK = "premium_field"

# Research catalog (one-time unlocks)
UNLOCKS = {
    "beet_seeds": {
        "name": "Beet Seeds",
        "currency": "primary",
        "cost": 8,
    },
    "well": {
        "name": "Well",
        "currency": "primary",
        "cost": 8,
    },
    PREMIUM_UNLOCK: {
        "name": "Premium Field",
        "currency": "secondary",
        "cost": 5,
    },
}

# Onboarding bonuses (chosen once)
BONUSES = {
    "speed": {
        "name": "Speed",
        "description": "Grow crops 20% faster",
    },
    "more_farms": {
        "name": "More farms",
        "description": "20% more farmland",
    },
    "higher_price": {
        "name": "Higher price",
        "description": "20% more profit",
    },
}
SPEED_BONUS_FACTOR = 0.8
MORE_FARMS_FACTOR = 1.2
HIGHER_PRICE_FACTOR = 1.2

# Currency exchange: primary units per secondary unit
EXCHANGE_RATE = 10
EXCHANGE_DIRECTIONS = ("primary_to_secondary", "secondary_to_primary")
