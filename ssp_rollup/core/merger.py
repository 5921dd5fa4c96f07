#!/usr/bin/env python3
"""
Global Aggregate Merger - folds partition summaries into the running total

The global aggregate is a plain value: merge() takes the current
aggregate and returns a new one, and the caller decides when to persist
it. Reprocessing a partition first retracts the summary it contributed
last time, so N reprocessings of identical input count it exactly once.

Key features:
- Retract-then-add per partition (idempotent for mutable partitions)
- Integer map union for counters, first-seen label order preserved
- Labels that drop to zero on retraction disappear, so "retract P then
  merge P'" equals "never saw P, merged P'"
- Any counter going negative is a StateDivergence, never clamped
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .aggregator import DIMENSIONS, FIXED_LABELS, PartitionSummary, empty_counters
from .errors import StateDivergence
from .partition import PartitionKey
from .ranking import top_n

logger = logging.getLogger(__name__)


@dataclass
class GlobalAggregate:
    """Cumulative statistics over every merged partition."""
    total_records: int = 0
    counters: Dict[str, Dict[str, int]] = field(default_factory=empty_counters)
    autoria: Dict[str, int] = field(default_factory=lambda: {'conhecida': 0, 'desconhecida': 0})
    flagrante: Dict[str, int] = field(default_factory=lambda: {'sim': 0, 'nao': 0})
    top_brands: List[Tuple[str, int]] = field(default_factory=list)
    partitions: Dict[str, str] = field(default_factory=dict)   # "YYYY-MM" -> records digest
    updated_at: Optional[str] = None

    def copy(self) -> "GlobalAggregate":
        return copy.deepcopy(self)

    def to_document(self) -> dict:
        """Dashboard shape (estatisticas.json)."""
        doc = {
            'ultimaAtualizacao': self.updated_at,
            'totalRegistros': self.total_records,
        }
        doc.update(copy.deepcopy(self.counters))
        doc['porAutoria'] = dict(self.autoria)
        doc['porFlagrante'] = dict(self.flagrante)
        doc['top10MarcasMaisRoubadas'] = [{label: count} for label, count in self.top_brands]
        doc['particoes'] = dict(sorted(self.partitions.items()))
        return doc

    @classmethod
    def from_document(cls, doc: dict) -> "GlobalAggregate":
        counters = empty_counters()
        for dim in DIMENSIONS:
            for label, count in doc.get(dim, {}).items():
                counters[dim][str(label)] = int(count)

        top_brands = []
        for entry in doc.get('top10MarcasMaisRoubadas', []):
            top_brands.extend((str(label), int(count)) for label, count in entry.items())

        return cls(
            total_records=int(doc.get('totalRegistros', 0)),
            counters=counters,
            autoria={k: int(doc.get('porAutoria', {}).get(k, 0)) for k in ('conhecida', 'desconhecida')},
            flagrante={k: int(doc.get('porFlagrante', {}).get(k, 0)) for k in ('sim', 'nao')},
            top_brands=top_brands,
            partitions={str(k): str(v) for k, v in doc.get('particoes', {}).items()},
            updated_at=doc.get('ultimaAtualizacao'),
        )


def _add_counter(target: Dict[str, int], source: Dict[str, int]):
    for label, count in source.items():
        target[label] = target.get(label, 0) + count


def _subtract_counter(target: Dict[str, int], source: Dict[str, int],
                      dimension: str, key: PartitionKey, keep_zero: bool):
    for label, count in source.items():
        remaining = target.get(label, 0) - count
        if remaining < 0:
            raise StateDivergence(
                f"retracting {key} drives {dimension}[{label!r}] to {remaining}; "
                "the stored summary does not match what the aggregate contains"
            )
        if remaining == 0 and not keep_zero:
            target.pop(label, None)
        else:
            target[label] = remaining


def retract(aggregate: GlobalAggregate, summary: PartitionSummary, key: PartitionKey):
    """Subtract a previously merged summary from `aggregate` (in place)."""
    if summary.total_records > aggregate.total_records:
        raise StateDivergence(
            f"retracting {key} removes {summary.total_records} records "
            f"from a total of {aggregate.total_records}"
        )
    aggregate.total_records -= summary.total_records

    for dim in DIMENSIONS:
        _subtract_counter(aggregate.counters[dim], summary.counters.get(dim, {}),
                          dim, key, keep_zero=dim in FIXED_LABELS)
    _subtract_counter(aggregate.autoria, summary.autoria, 'porAutoria', key, keep_zero=True)
    _subtract_counter(aggregate.flagrante, summary.flagrante, 'porFlagrante', key, keep_zero=True)


def add(aggregate: GlobalAggregate, summary: PartitionSummary):
    """Integer map union of `summary` into `aggregate` (in place)."""
    aggregate.total_records += summary.total_records
    for dim in DIMENSIONS:
        _add_counter(aggregate.counters[dim], summary.counters.get(dim, {}))
    _add_counter(aggregate.autoria, summary.autoria)
    _add_counter(aggregate.flagrante, summary.flagrante)


def merge(
    aggregate: GlobalAggregate,
    summary: PartitionSummary,
    key: PartitionKey,
    previous: Optional[PartitionSummary] = None,
    digest: str = '',
    top_brand_count: int = 10,
    updated_at: Optional[str] = None,
) -> GlobalAggregate:
    """
    Fold one partition summary into the aggregate.

    Args:
        aggregate: Current global aggregate (not modified)
        summary: New summary for `key`
        key: Partition being merged
        previous: Summary stored the last time `key` was merged, if any
        digest: Records digest recorded for `key`
        top_brand_count: Length of the brand ranking
        updated_at: ISO timestamp for ultimaAtualizacao

    Returns:
        New GlobalAggregate containing exactly one contribution for `key`
    """
    if previous is None and key.label in aggregate.partitions:
        raise StateDivergence(
            f"{key} is already part of the aggregate but no prior summary was given; "
            "merging again would double count it"
        )

    result = aggregate.copy()
    if previous is not None:
        retract(result, previous, key)
        logger.info(f"Retracted previous contribution of {key} ({previous.total_records:,} records)")

    add(result, summary)
    result.top_brands = top_n(result.counters['porMarcaRoubada'], top_brand_count)
    result.partitions[key.label] = digest
    result.updated_at = updated_at or datetime.now().isoformat(timespec='seconds')
    return result


def prior_summary(key: PartitionKey, store) -> Optional[PartitionSummary]:
    """
    Summary to retract before re-merging `key`.

    Returns None for a partition that was never processed. A fingerprint
    without its stored summary is fatal: skipping the retraction would
    double count the partition.
    """
    fingerprint = store.get(key)
    if fingerprint is None:
        return None
    if fingerprint.stored_summary is None:
        raise StateDivergence(
            f"{key} is marked processed (at {fingerprint.processed_at}) "
            "but its stored summary is missing"
        )
    return fingerprint.stored_summary
