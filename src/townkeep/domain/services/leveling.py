from __future__ import annotations

from dataclasses import dataclass

from townkeep.domain.models.town import PLOTS_PER_LEVEL, Town, xp_threshold


@dataclass(frozen=True)
class LevelingOutcome:
    level: int
    xp: int
    xp_to_next_level: int
    levels_gained: int = 0
    max_claimed_plots: int | None = None

    @property
    def leveled_up(self) -> bool:
        return self.levels_gained > 0


class LevelingEngine:
    def apply_xp(self, town: Town, amount: int) -> LevelingOutcome:
        amount = int(amount)
        if amount < 0:
            raise ValueError("XP grants cannot be negative")

        level = max(int(town.level), 1)
        xp = max(int(town.xp), 0) + amount
        threshold = xp_threshold(level)
        gained = 0
        while xp >= threshold:
            xp -= threshold
            level += 1
            gained += 1
            threshold = xp_threshold(level)

        return LevelingOutcome(level=level, xp=xp, xp_to_next_level=threshold, levels_gained=gained)

    def upgrade(self, town: Town) -> LevelingOutcome:
        level = max(int(town.level), 1) + 1
        return LevelingOutcome(
            level=level,
            xp=0,
            xp_to_next_level=xp_threshold(level),
            levels_gained=1,
            max_claimed_plots=level * PLOTS_PER_LEVEL,
        )

    @staticmethod
    def apply(town: Town, outcome: LevelingOutcome) -> Town:
        town.level = outcome.level
        town.xp = outcome.xp
        town.xp_to_next_level = outcome.xp_to_next_level
        if outcome.max_claimed_plots is not None:
            town.max_claimed_plots = outcome.max_claimed_plots
        return town
