#!/usr/bin/env python3
"""
Incremental Pipeline - refreshes the dashboard documents

Walks the source years newest first, reprocesses only the partitions the
mutability policy marks as eligible, and folds each one into the global
aggregate with retract-then-add.

Key features:
- One partition at a time, persisted before the next one starts
  (outputs first, fingerprint last)
- A year whose download fails is skipped; its partitions stay eligible
- Startup check that the aggregate and the processing state agree on
  which partitions were merged; a run that stopped before recording its
  last partition is rolled back to the pre-merge backup
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional, Sequence

from .aggregator import PartitionAggregator
from .config import PipelineConfig
from .downloader import RetryPolicy, SourceDownloader
from .errors import StateDivergence, TransientSourceError
from .extractor import NormalizedRecord, SourceReader, extract_partition, records_digest, split_by_partition
from .fingerprint_store import FingerprintStore
from .merger import merge, prior_summary
from .partition import PartitionKey
from .policy import eligible_partitions
from .ranking import top_municipalities, top_neighborhoods, top_police_stations
from .samples import map_item, recent_item
from .storage import OutputStore

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    processed: List[str] = field(default_factory=list)
    skipped: int = 0
    failed_years: List[int] = field(default_factory=list)
    records: int = 0


def _recency(record: NormalizedRecord):
    return (record.data or date.min, record.hora if record.hora is not None else -1)


class IncrementalPipeline:
    """
    Incremental refresh of the published statistics.

    Args:
        config: Pipeline configuration
        downloader: Source downloader (built from config when omitted)
        reader: CSV reader (default SourceReader)
        now: Reference time for the mutability policy (default: now)
    """

    def __init__(
        self,
        config: PipelineConfig,
        downloader: Optional[SourceDownloader] = None,
        reader: Optional[SourceReader] = None,
        now: Optional[datetime] = None,
    ):
        self.config = config
        self.now = now or datetime.now()
        self.downloader = downloader or SourceDownloader(
            config.raw_dir,
            url_template=config.source_url_template,
            policy=RetryPolicy(max_attempts=config.max_attempts, base_delay=config.base_delay),
            timeout=config.request_timeout,
        )
        self.reader = reader or SourceReader()
        self.aggregator = PartitionAggregator(today=self.now.date())

        self.outputs = OutputStore(config.data_dir)
        self.store = FingerprintStore(config.data_dir / FingerprintStore.FILENAME)
        self.aggregate = self.outputs.load_aggregate()
        self.map_sample = self.outputs.load_sample(OutputStore.MAP, config.map_capacity)
        self.recent_sample = self.outputs.load_sample(OutputStore.RECENT, config.recent_capacity)

        self._check_consistency()

    def _check_consistency(self):
        merged = self.aggregate.partitions
        recorded = self.store.digests()
        if merged == recorded:
            return

        backup = self.outputs.load_backup()
        if backup is not None and backup.partitions == recorded:
            pending = sorted(k for k in set(merged) | set(recorded) if merged.get(k) != recorded.get(k))
            logger.warning(f"⚠️  Previous run stopped before recording {', '.join(pending)}; "
                           "restoring the aggregate from backup")
            self.aggregate = backup
            self.outputs.write_aggregate(self.aggregate)
            self._write_rankings()
            return

        only_aggregate = sorted(set(merged) - set(recorded))
        only_store = sorted(set(recorded) - set(merged))
        changed = sorted(k for k in set(merged) & set(recorded) if merged[k] != recorded[k])
        raise StateDivergence(
            "aggregate and processing state disagree: "
            f"only in aggregate={only_aggregate}, only in state={only_store}, "
            f"digest mismatch={changed}. A previous run probably stopped between "
            "writing the outputs and the processing state and no usable backup "
            "is left; rebuild from scratch."
        )

    def years(self) -> List[int]:
        return list(range(self.now.year, self.config.first_year - 1, -1))

    def run(self) -> RunReport:
        """
        Process every eligible partition, newest year first.

        Returns:
            RunReport with processed partitions, skipped partitions,
            skipped years and records merged
        """
        report = RunReport()
        start_time = time.time()

        logger.info("="*60)
        logger.info(f"INCREMENTAL UPDATE ({self.now:%Y-%m-%d %H:%M})")
        logger.info("="*60)

        for year in self.years():
            eligible = eligible_partitions(year, self.now, self.store)
            report.skipped += (12 if year < self.now.year else self.now.month) - len(eligible)
            if not eligible:
                logger.info(f"{year}: nothing to do")
                continue

            logger.info(f"{year}: {len(eligible)} partition(s) to process "
                        f"({', '.join(k.label for k in eligible)})")
            try:
                path = self.downloader.fetch(year)
            except TransientSourceError as e:
                logger.warning(f"⚠️  Skipping {year}: {e}")
                report.failed_years.append(year)
                continue

            by_partition, _ = split_by_partition(self.reader.iter_rows(path))
            for key in eligible:
                count = self.process_partition(key, by_partition.get(key, []))
                report.processed.append(key.label)
                report.records += count

        elapsed = time.time() - start_time
        logger.info("="*60)
        logger.info(f"✅ Update complete in {elapsed:.1f}s: {len(report.processed)} processed, "
                    f"{report.skipped} unchanged, {len(report.failed_years)} year(s) unavailable, "
                    f"{report.records:,} records merged")
        logger.info("="*60)
        return report

    def process_partition(self, key: PartitionKey, rows: Sequence[Mapping[str, object]]) -> int:
        """
        Extract, aggregate, merge and persist one partition.

        Args:
            key: Partition to process
            rows: Raw rows (rows of other partitions are ignored)

        Returns:
            Number of records merged for the partition
        """
        records = extract_partition(rows, key)
        summary = self.aggregator.aggregate(records)
        digest = records_digest(records)
        previous = prior_summary(key, self.store)

        before = self.aggregate
        self.aggregate = merge(
            self.aggregate, summary, key,
            previous=previous,
            digest=digest,
            top_brand_count=self.config.top_brands,
            updated_at=self.now.isoformat(timespec='seconds'),
        )

        newest_first = sorted(records, key=_recency, reverse=True)
        map_points = [p for p in (map_item(r, key) for r in newest_first) if p is not None]
        self.map_sample.admit(map_points, partition=key)
        self.recent_sample.admit([recent_item(r, key) for r in newest_first], partition=key)

        self.outputs.write_backup(before)
        self.outputs.write_aggregate(self.aggregate)
        self.outputs.write_samples(self.map_sample, self.recent_sample)
        self._write_rankings()
        self.store.record_processed(key, summary, len(records), digest,
                                    processed_at=self.now.isoformat(timespec='seconds'))

        action = 'Reprocessed' if previous is not None else 'Processed'
        logger.info(f"✅ {action} {key}: {len(records):,} records "
                    f"(total {self.aggregate.total_records:,})")
        return len(records)

    def _write_rankings(self):
        counters = self.aggregate.counters
        self.outputs.write_rankings(
            top_neighborhoods(counters['porBairro'], self.config.top_neighborhoods),
            top_municipalities(counters['porMunicipio'], self.config.top_municipalities),
            top_police_stations(counters['porDelegacia'], self.config.top_police_stations),
        )

    def storage_summary(self) -> Dict:
        return self.outputs.get_storage_stats()
