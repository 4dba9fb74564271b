from abc import ABC, abstractmethod
from typing import Any, List, Optional
from uuid import UUID

from townkeep.domain.models.attribute import AttributeValue, TypeTag
from townkeep.domain.models.town import DEFAULT_CITIZEN_ROLE, Citizen, Rank, Town
from townkeep.domain.services.leveling import LevelingOutcome


DEFAULT_NAMESPACE = "users"


class AttributeStore(ABC):
    @abstractmethod
    def save(
        self,
        entity_id: UUID,
        key: str,
        value: Any,
        tag: Optional[TypeTag] = None,
        *,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def load(self, entity_id: UUID, key: str, default: Optional[str] = None, *, namespace: str = DEFAULT_NAMESPACE) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def load_value(self, entity_id: UUID, key: str, *, namespace: str = DEFAULT_NAMESPACE) -> Optional[AttributeValue]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, entity_id: UUID, key: str, *, namespace: str = DEFAULT_NAMESPACE) -> bool:
        raise NotImplementedError

    @abstractmethod
    def wipe(self, entity_id: UUID) -> bool:
        raise NotImplementedError

    @abstractmethod
    def exists(self, entity_id: UUID, key: str, *, namespace: str = DEFAULT_NAMESPACE) -> bool:
        raise NotImplementedError

    @abstractmethod
    def table_exists(self, name: str) -> bool:
        raise NotImplementedError


class TownRepository(ABC):
    @abstractmethod
    def upsert_town(self, town: Town) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_town(self, town_id: UUID) -> Optional[Town]:
        raise NotImplementedError

    @abstractmethod
    def get_town_by_name(self, name: str) -> Optional[Town]:
        raise NotImplementedError

    @abstractmethod
    def get_town_by_owner(self, owner_id: UUID) -> Optional[Town]:
        raise NotImplementedError

    @abstractmethod
    def get_town_by_member(self, player_id: UUID) -> Optional[Town]:
        raise NotImplementedError

    @abstractmethod
    def list_towns(self) -> List[Town]:
        raise NotImplementedError

    @abstractmethod
    def is_name_taken(self, name: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def delete_town(self, town_id: UUID) -> bool:
        raise NotImplementedError

    @abstractmethod
    def assign_plot(self, plot_id: str, town_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    def unassign_plot(self, plot_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_plot_assigned(self, plot_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_plots(self, town_id: UUID) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def add_citizen(self, player_id: UUID, town_id: UUID, role: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_citizen(self, player_id: UUID, town_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_citizens(self, town_id: UUID) -> List[Citizen]:
        raise NotImplementedError

    @abstractmethod
    def invite(self, player_id: UUID, town_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    def has_invitation(self, player_id: UUID, town_id: UUID) -> bool:
        raise NotImplementedError

    @abstractmethod
    def revoke_invitation(self, player_id: UUID, town_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_invited_towns(self, player_id: UUID) -> List[Town]:
        raise NotImplementedError

    @abstractmethod
    def set_rank(self, rank: Rank) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_ranks(self, town_id: UUID) -> List[Rank]:
        raise NotImplementedError

    @abstractmethod
    def set_tax(self, town_id: UUID, tax: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_tax(self, town_id: UUID) -> int:
        raise NotImplementedError

    @abstractmethod
    def set_visibility(self, town_id: UUID, is_public: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_public_town(self, town_id: UUID) -> bool:
        raise NotImplementedError

    @abstractmethod
    def get_max_plots(self, town_id: UUID) -> int:
        raise NotImplementedError

    @abstractmethod
    def grant_xp(self, town: Town, amount: int) -> LevelingOutcome:
        raise NotImplementedError

    def accept_invitation(self, player_id: UUID, town_id: UUID, role: str = DEFAULT_CITIZEN_ROLE) -> bool:
        """Turn a pending invitation into membership; False when none was pending."""
        if not self.has_invitation(player_id, town_id):
            return False
        self.revoke_invitation(player_id, town_id)
        self.add_citizen(player_id, town_id, role)
        return True
