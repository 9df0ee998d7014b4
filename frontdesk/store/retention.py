from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from . import records as store_records
from .types import Collection
from .utils import DAY_MS, now_ms

if TYPE_CHECKING:
    from ._store import LocalStore

logger = logging.getLogger(__name__)

RETENTION_DAYS = 90
WARNING_DAYS = 80

# Collection -> timestamp attribute the retention window is measured on.
RETAINED_COLLECTIONS: dict[Collection, str] = {
    Collection.CALLS: "timestamp",
    Collection.ACTIVITIES: "timestamp",
    Collection.TICKETS: "created_at",
}


@dataclass
class RetentionReport:
    deleted: dict[str, int] = field(default_factory=dict)
    flagged: dict[str, int] = field(default_factory=dict)

    @property
    def backup_warning(self) -> bool:
        return any(self.flagged.values())

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())


def cleanup_old_data(
    store: LocalStore,
    *,
    now: int | None = None,
    retention_days: int = RETENTION_DAYS,
    warning_days: int = WARNING_DAYS,
) -> RetentionReport:
    """Delete records at or past the retention window.

    Records younger than the window but at least `warning_days` old are only
    counted; any such record sets `backup_warning` on the report.
    """

    if warning_days > retention_days:
        raise ValueError("warning_days must not exceed retention_days")
    now = now_ms() if now is None else int(now)
    cutoff = now - retention_days * DAY_MS
    warning_cutoff = now - warning_days * DAY_MS
    report = RetentionReport()

    for collection, attr in RETAINED_COLLECTIONS.items():
        report.flagged[collection.value] = store.count_between(
            collection, attr, cutoff, warning_cutoff
        )

    report.deleted = {collection.value: 0 for collection in RETAINED_COLLECTIONS}
    for collection, attr in RETAINED_COLLECTIONS.items():
        keys = store.keys_at_or_below(collection, attr, cutoff)
        if not keys:
            continue
        logger.info("cleaning up %d old %s records", len(keys), collection.value)
        if collection is Collection.CALLS:
            deleted = 0
            for key in keys:
                if store.get(collection, key) is None:
                    continue
                # Tickets raised from the call go with it.
                report.deleted[Collection.TICKETS.value] += store_records.delete_recording(
                    store, key
                )
                deleted += 1
        else:
            deleted = store.delete_many(collection, keys)
        report.deleted[collection.value] += deleted
    return report
