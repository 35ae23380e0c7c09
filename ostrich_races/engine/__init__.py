"""
Race engine package for the ostrich races.

The package is split into the seeded RNG, data models, roster generation,
the event engine and the race state machine. Session code composes these
pieces for a full race.
"""

from .data_models import (  # noqa: F401
    Announcement,
    AnnouncementKind,
    ColorScheme,
    Entrant,
    RaceState,
    TimeOfDay,
)
from .events import (  # noqa: F401
    ActiveEvent,
    ChainGeometry,
    ChainReaction,
    EventEngine,
    InRaceEventType,
    PreRaceEventType,
)
from .race_loop import Race, RaceSettings, RaceStateError  # noqa: F401
from .rng import SeededRandom, UnseededRandom, resolve_rng  # noqa: F401
from .roster import ENTRANT_POOL, initialize_roster, odds_map  # noqa: F401
from .telemetry import EntrantFrame, RaceFrame, TelemetryCollector  # noqa: F401

__all__ = [
    "ActiveEvent",
    "Announcement",
    "AnnouncementKind",
    "ChainGeometry",
    "ChainReaction",
    "ColorScheme",
    "ENTRANT_POOL",
    "Entrant",
    "EntrantFrame",
    "EventEngine",
    "InRaceEventType",
    "PreRaceEventType",
    "Race",
    "RaceFrame",
    "RaceSettings",
    "RaceState",
    "RaceStateError",
    "SeededRandom",
    "TelemetryCollector",
    "TimeOfDay",
    "UnseededRandom",
    "initialize_roster",
    "odds_map",
    "resolve_rng",
]
