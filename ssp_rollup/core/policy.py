"""
Mutability policy: which partitions have to be (re)processed.

The source keeps appending to the current month and still corrects the
month before it. Everything older is frozen once it has been merged.
"""

from datetime import date, datetime
from typing import List, Union

from .partition import PartitionKey

Moment = Union[date, datetime]


def is_mutable(key: PartitionKey, now: Moment) -> bool:
    current = PartitionKey.of(now)
    return key == current or key == current.previous()


def needs_reprocessing(key: PartitionKey, now: Moment, store) -> bool:
    """
    True for the current month, the month before it, and any partition
    the fingerprint store has never seen.
    """
    if is_mutable(key, now):
        return True
    return store.get(key) is None


def partitions_for_year(year: int, now: Moment) -> List[PartitionKey]:
    """Months of `year` that can hold data as of `now`, newest first."""
    if year > now.year:
        return []
    last_month = now.month if year == now.year else 12
    return [PartitionKey(year, month) for month in range(last_month, 0, -1)]


def eligible_partitions(year: int, now: Moment, store) -> List[PartitionKey]:
    return [key for key in partitions_for_year(year, now)
            if needs_reprocessing(key, now, store)]
