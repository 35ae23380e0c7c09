from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from .data_models import ColorScheme, Entrant, TimeOfDay
from .rng import resolve_rng

ROSTER_SIZE = 8

BASE_SPEED_RANGE = (0.5, 1.3)
STAMINA_RANGE = (0.5, 1.0)
CONSISTENCY_RANGE = (0.4, 1.0)

RATING_WEIGHTS = {"speed": 0.5, "stamina": 0.3, "consistency": 0.2}

# Checked top-down; first threshold the rating reaches wins.
ODDS_BUCKETS = (
    (1.1, 2),
    (1.0, 3),
    (0.9, 4),
    (0.8, 5),
    (0.7, 6),
    (0.6, 8),
    (0.5, 10),
)
LONGSHOT_ODDS = 12

PREFERRED_TIME_BONUS = 1.15
OPPOSITE_TIME_PENALTY = 0.90
STEP_PENALTIES = {1: 0.95, 2: 0.98}

OPPOSITE_TIMES = (
    frozenset((TimeOfDay.NIGHT, TimeOfDay.DAY)),
    frozenset((TimeOfDay.DAWN, TimeOfDay.DUSK)),
    frozenset((TimeOfDay.MORNING, TimeOfDay.EVENING)),
    frozenset((TimeOfDay.AFTERNOON, TimeOfDay.NIGHT)),
)

_DARK_BODY = "#2C1810"
_BROWN_BODY = "#654321"


def _scheme(name: str, color: str, body: str, neck: str, eyes: str) -> ColorScheme:
    return ColorScheme(
        name=name,
        color=color,
        saddle=color,
        collar=color,
        body_color=body,
        neck_color=neck,
        eye_style=eyes,
    )


ENTRANT_POOL: Sequence[ColorScheme] = (
    _scheme("Golden Emperor", "#FFD700", _DARK_BODY, "#F5F5F5", "dot"),
    _scheme("Diamond Sand", "#FF00FF", _BROWN_BODY, "#FF10F0", "dash"),
    _scheme("Platinum Pressured", "#00FFFF", _DARK_BODY, "#FF69B4", "dotdash"),
    _scheme("Royal Fortune", "#8A2BE2", _BROWN_BODY, "#F5F5F5", "dot"),
    _scheme("Tennis Chain", "#00FF00", _DARK_BODY, "#FFE4E1", "dash"),
    _scheme("Ruby Luxurious", "#FF1493", _BROWN_BODY, "#FF10F0", "dotdash"),
    _scheme("Sapphire Elite", "#00CED1", _DARK_BODY, "#FF69B4", "dot"),
    _scheme("Classic Caviar", "#FFA500", _BROWN_BODY, "#F5F5F5", "sunglasses"),
    _scheme("Crypto Gains", "#F7931A", _DARK_BODY, "#FFE4E1", "dash"),
    _scheme("Equity Drip", "#1E90FF", _BROWN_BODY, "#FF10F0", "dotdash"),
    _scheme("Elite Circle", "#8A2BE2", _DARK_BODY, "#FF69B4", "dot"),
    _scheme("Maximum ROI", "#32CD32", _BROWN_BODY, "#F5F5F5", "sunglasses"),
    _scheme("Hella Pricey", "#FFD700", _DARK_BODY, "#FFE4E1", "dash"),
    _scheme("Value Going Up", "#50C878", _BROWN_BODY, "#FF10F0", "dotdash"),
    _scheme("Big Brain Energy", "#00BFFF", _DARK_BODY, "#FF69B4", "sunglasses"),
    _scheme("Gospel Feathers", "#E6E6FA", _BROWN_BODY, "#F5F5F5", "dot"),
)


def time_of_day_modifier(preferred: TimeOfDay, current: Optional[TimeOfDay]) -> float:
    if current is None:
        return 1.0
    if preferred == current:
        return PREFERRED_TIME_BONUS
    if frozenset((preferred, current)) in OPPOSITE_TIMES:
        return OPPOSITE_TIME_PENALTY
    cycle = len(TimeOfDay)
    gap = abs(preferred.index - current.index)
    steps = min(gap, cycle - gap)
    return STEP_PENALTIES.get(steps, 1.0)


def weighted_rating(
    base_speed: float,
    stamina: float,
    consistency: float,
    preferred: TimeOfDay,
    current: Optional[TimeOfDay] = None,
) -> float:
    rating = (
        base_speed * RATING_WEIGHTS["speed"]
        + stamina * RATING_WEIGHTS["stamina"]
        + consistency * RATING_WEIGHTS["consistency"]
    )
    return rating * time_of_day_modifier(preferred, current)


def odds_from_rating(rating: float) -> int:
    for threshold, odds in ODDS_BUCKETS:
        if rating >= threshold:
            return odds
    return LONGSHOT_ODDS


def create_entrant(
    number: int,
    scheme: ColorScheme,
    time_of_day: Optional[TimeOfDay] = None,
    rng=None,
) -> Entrant:
    """
    Draws attributes for one entrant and prices it.

    Draw order is base speed, stamina, consistency, preferred time. Peers
    rebuilding a seeded roster rely on that order.
    """
    rng = resolve_rng(rng)
    base_speed = rng.next_float(*BASE_SPEED_RANGE)
    stamina = rng.next_float(*STAMINA_RANGE)
    consistency = rng.next_float(*CONSISTENCY_RANGE)
    preferred = TimeOfDay.from_index(rng.next_int(0, len(TimeOfDay) - 1))

    entrant = Entrant(
        number=number,
        scheme=scheme,
        base_speed=base_speed,
        stamina=stamina,
        consistency=consistency,
        preferred_time=preferred,
    )
    entrant.odds = odds_from_rating(
        weighted_rating(base_speed, stamina, consistency, preferred, time_of_day)
    )
    return entrant


def initialize_roster(
    time_of_day: Optional[TimeOfDay] = None,
    rng=None,
    pool: Sequence[ColorScheme] = ENTRANT_POOL,
    size: int = ROSTER_SIZE,
) -> List[Entrant]:
    """
    Builds a fresh roster of ``size`` entrants drawn without replacement from ``pool``.

    All identities are picked before any attributes are drawn.
    """
    if size > len(pool):
        raise ValueError(f"Roster size {size} exceeds pool of {len(pool)}")
    rng = resolve_rng(rng)

    available = list(pool)
    picked: List[ColorScheme] = []
    for _ in range(size):
        index = rng.next_int(0, len(available) - 1)
        picked.append(available.pop(index))

    return [
        create_entrant(number, scheme, time_of_day, rng)
        for number, scheme in enumerate(picked, start=1)
    ]


def odds_map(entrants: Sequence[Entrant]) -> Dict[int, int]:
    return {entrant.number: entrant.odds for entrant in entrants}


def find_scheme(name: str) -> ColorScheme:
    for scheme in ENTRANT_POOL:
        if scheme.name == name:
            return scheme
    raise KeyError(f"Unknown entrant name: {name}")
