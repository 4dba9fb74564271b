from dataclasses import dataclass
from uuid import UUID


@dataclass
class TownLeveledUpEvent:
    town_id: UUID
    from_level: int
    to_level: int
    xp: int


@dataclass
class TownUpgradedEvent:
    town_id: UUID
    from_level: int
    to_level: int
    max_claimed_plots: int
