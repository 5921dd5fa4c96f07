"""
Bounded samples: the map points and recent records shown on the dashboard.

Both are fixed-capacity, most-recent-first collections. New items go to
the front, the oldest tail falls off. Every item is tagged with the
partition that contributed it so that reprocessing a partition can
replace its items instead of stacking a second copy on top.
"""

from collections import deque
from itertools import islice
from typing import Iterable, List, Optional

from .extractor import NormalizedRecord
from .partition import PartitionKey

PARTITION_FIELD = 'particao'


class BoundedSample:
    """Fixed-capacity deque, newest first, FIFO eviction from the tail."""

    def __init__(self, capacity: int, items: Optional[Iterable[dict]] = None):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        # items are newest first; anything past capacity is the oldest tail
        self._items = deque(islice(items or (), capacity), maxlen=capacity)

    def __len__(self):
        return len(self._items)

    def contents(self) -> List[dict]:
        return list(self._items)

    def evict_partition(self, key: PartitionKey) -> int:
        """Drop every item contributed by `key`. Returns how many were dropped."""
        kept = [item for item in self._items if item.get(PARTITION_FIELD) != key.label]
        removed = len(self._items) - len(kept)
        if removed:
            self._items = deque(kept, maxlen=self.capacity)
        return removed

    def admit(self, new_items: Iterable[dict], partition: Optional[PartitionKey] = None) -> "BoundedSample":
        """
        Prepend `new_items` (already ordered most recent first).

        When `partition` is given its previous items are removed first.
        Items past capacity are discarded from the old end.
        """
        if partition is not None:
            self.evict_partition(partition)
        # extendleft reverses, so feed it reversed to keep the batch order
        self._items.extendleft(reversed(list(new_items)))
        return self

def _date_text(record: NormalizedRecord) -> Optional[str]:
    return record.data.strftime('%d/%m/%Y') if record.data else record.data_raw

def map_item(record: NormalizedRecord, key: PartitionKey) -> Optional[dict]:
    """Map point for a record, or None when it has no usable coordinates."""
    if not record.has_coordinates:
        return None
    return {
        'lat': record.latitude,
        'lng': record.longitude,
        'rubrica': record.rubrica,
        'municipio': record.municipio,
        'bairro': record.bairro,
        'data': _date_text(record),
        'marca': record.marca_veiculo,
        'tipo': record.tipo_veiculo,
        PARTITION_FIELD: key.label,
    }

def recent_item(record: NormalizedRecord, key: PartitionKey) -> dict:
    return {
        'data': _date_text(record),
        'hora': record.hora_raw,
        'rubrica': record.rubrica,
        'municipio': record.municipio,
        'bairro': record.bairro,
        'delegacia': record.delegacia,
        'tipoVeiculo': record.tipo_veiculo,
        'marcaVeiculo': record.marca_veiculo,
        'corVeiculo': record.cor_veiculo,
        'anoFabricacao': record.ano_fabricacao,
        'latitude': record.latitude,
        'longitude': record.longitude,
        PARTITION_FIELD: key.label,
    }
