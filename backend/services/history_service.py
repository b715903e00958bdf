"""Checkout history listing and the offline duplicate cleanup job."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from backend.domain.constraints import PolicyConfig, policy_config_from_settings
from backend.domain.models import CheckoutEvent, HistoryAction
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class HistoryCleanupResult:
    checked: int
    duplicates_deleted: int

    @property
    def remaining(self) -> int:
        return self.checked - self.duplicates_deleted

    def to_api_dict(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "duplicates_deleted": self.duplicates_deleted,
            "remaining": self.remaining,
        }


def find_duplicate_event_ids(
    events: list[CheckoutEvent],
    window_seconds: float,
) -> list[int]:
    """Return ids of events recorded too soon after the previous one of their kind.

    Events are grouped by (device, holder, action); within a group each entry
    is compared to its chronological predecessor, duplicates included.
    """
    groups: dict[tuple[str, str, HistoryAction], list[CheckoutEvent]] = defaultdict(list)
    for event in events:
        groups[(event.device_id, event.holder_id, event.action)].append(event)

    duplicate_ids: list[int] = []
    for group in groups.values():
        group.sort(key=lambda item: (item.timestamp, item.event_id or 0))
        for previous, current in zip(group, group[1:]):
            gap = (current.timestamp - previous.timestamp).total_seconds()
            if gap < window_seconds and current.event_id is not None:
                duplicate_ids.append(current.event_id)
    return duplicate_ids


class HistoryService:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._policy: PolicyConfig = policy_config_from_settings(self._settings)

    def list_recent(
        self,
        limit: Optional[int] = None,
        device_id: Optional[str] = None,
    ) -> list[CheckoutEvent]:
        return self._repository.list_history_events(
            limit=limit or self._settings.history_list_limit,
            device_id=device_id,
        )

    def cleanup_duplicates(self) -> HistoryCleanupResult:
        """Prune near-identical events left behind by double submissions."""
        events = self._repository.list_history_events_chronological()
        duplicate_ids = find_duplicate_event_ids(
            events,
            self._policy.history_cleanup_window.total_seconds(),
        )
        deleted = self._repository.delete_history_events(duplicate_ids)
        logger.info(
            "History cleanup completed | checked=%s | duplicates=%s | deleted=%s",
            len(events),
            len(duplicate_ids),
            deleted,
        )
        return HistoryCleanupResult(checked=len(events), duplicates_deleted=deleted)
