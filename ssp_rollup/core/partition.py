"""
Partition keys: one (year, month) unit of source data.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Union


@dataclass(frozen=True, order=True)
class PartitionKey:
    """(year, month) partition, ordered chronologically."""
    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"month out of range: {self.month}")

    @classmethod
    def of(cls, moment: Union[date, datetime]) -> "PartitionKey":
        return cls(moment.year, moment.month)

    @classmethod
    def from_label(cls, label: str) -> "PartitionKey":
        """Parse a "YYYY-MM" label."""
        year, _, month = label.partition('-')
        try:
            return cls(int(year), int(month))
        except ValueError:
            raise ValueError(f"invalid partition label: {label!r}") from None

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def previous(self) -> "PartitionKey":
        if self.month == 1:
            return PartitionKey(self.year - 1, 12)
        return PartitionKey(self.year, self.month - 1)

    def __str__(self):
        return self.label
