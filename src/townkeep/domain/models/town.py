from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID


DEFAULT_MAX_CLAIMED_PLOTS = 5
PLOTS_PER_LEVEL = 5
DEFAULT_CITIZEN_ROLE = "member"
OWNER_ROLE = "owner"

XP_BASE = 1000
XP_GROWTH = Decimal("1.5")


def xp_threshold(level: int) -> int:
    """XP a town must bank at ``level`` before it reaches the next level."""

    scaled = Decimal(XP_BASE) * Decimal(max(int(level), 1)) * XP_GROWTH
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass
class Town:
    id: UUID
    name: str
    owner_id: UUID
    center_plot_id: str
    level: int = 1
    budget: int = 0
    xp: int = 0
    xp_to_next_level: int = xp_threshold(1)
    tax: int = 0
    max_claimed_plots: int = DEFAULT_MAX_CLAIMED_PLOTS
    is_public: bool = False

    def __post_init__(self) -> None:
        self.name = str(self.name).strip()
        if int(self.level) < 1:
            raise ValueError("Town level must be at least 1")
        if int(self.tax) < 0:
            raise ValueError("Town tax cannot be negative")
        if int(self.max_claimed_plots) < 0:
            raise ValueError("Claimed plot limit cannot be negative")

    @classmethod
    def found(cls, name: str, owner_id: UUID, center_plot_id: str, *, town_id: UUID | None = None) -> Town:
        """Create a brand new level 1 town owned by ``owner_id``."""

        return cls(
            id=town_id or uuid.uuid4(),
            name=str(name).strip(),
            owner_id=owner_id,
            center_plot_id=str(center_plot_id),
        )


@dataclass(frozen=True)
class Citizen:
    player_id: UUID
    town_id: UUID
    role: str = DEFAULT_CITIZEN_ROLE


@dataclass(frozen=True)
class PlotAssignment:
    plot_id: str
    town_id: UUID


@dataclass(frozen=True)
class Invitation:
    player_id: UUID
    town_id: UUID


@dataclass(frozen=True)
class Rank:
    town_id: UUID
    rank_name: str
    permissions: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        normalized = [str(item).strip().lower() for item in self.permissions if str(item).strip()]
        object.__setattr__(self, "permissions", normalized)

    def allows(self, permission: str) -> bool:
        wanted = str(permission).strip().lower()
        return "*" in self.permissions or wanted in self.permissions
