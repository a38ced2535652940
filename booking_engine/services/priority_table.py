"""Requester category to priority score lookup."""

from __future__ import annotations

from typing import Optional

from booking_engine.repository.data_repository import DataRepository
from booking_engine.utils.config import Settings, get_settings


class UnknownCategoryError(LookupError):
    """Raised when a requester category has no priority entry."""


class PriorityTable:
    """Read-mostly view of PriorityEntries; always returns the latest committed score."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def score_for(self, category: str) -> int:
        entry = self._repository.get_priority_entry(category)
        if entry is None:
            raise UnknownCategoryError(f"Requester category {category} is not registered")
        return entry.priority_score

    def as_dict(self) -> dict[str, int]:
        return {
            entry.category: entry.priority_score
            for entry in self._repository.list_priority_entries()
        }
