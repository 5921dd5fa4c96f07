#!/usr/bin/env python3
"""
Quick validation of the published documents.

This script:
1. Checks that every document exists and parses
2. Checks sample caps and top-list ordering
3. Checks that counters are non-negative and agree with the processing state
4. Optionally recounts a raw extract with DuckDB and compares it with the
   stored partition summaries (--raw-file)

Usage:
    python3 validate_outputs.py --data-dir ./data
    python3 validate_outputs.py --raw-file data/raw/VeiculosSubtraidos_2024.csv
"""

import sys
from pathlib import Path
import argparse
import logging

sys.path.insert(0, str(Path(__file__).parent))

from ssp_rollup.core import (
    FingerprintStore, OutputStore, PartitionAuditor, SourceReader, StateDivergence,
)
from ssp_rollup.core.aggregator import DIMENSIONS
from ssp_rollup.core.config import PipelineConfig

logging.basicConfig(
    level=logging.INFO,
    format='%(message)s'
)
logger = logging.getLogger(__name__)

REQUIRED = [
    OutputStore.STATISTICS,
    OutputStore.MAP,
    OutputStore.RECENT,
    OutputStore.TOP_NEIGHBORHOODS,
    OutputStore.TOP_MUNICIPALITIES,
    OutputStore.TOP_POLICE_STATIONS,
    FingerprintStore.FILENAME,
]


def check_files(data_dir: Path) -> bool:
    """Check that every document exists."""
    missing = [name for name in REQUIRED if not (data_dir / name).exists()]
    if missing:
        logger.error(f"❌ Missing documents in {data_dir}: {', '.join(missing)}")
        logger.error("   Run: python3 update_data.py --data-dir ./data")
        return False
    logger.info(f"✅ Found all {len(REQUIRED)} documents")
    return True


def check_caps(outputs: OutputStore, config: PipelineConfig) -> bool:
    """Check sample and ranking sizes."""
    limits = {
        OutputStore.MAP: config.map_capacity,
        OutputStore.RECENT: config.recent_capacity,
        OutputStore.TOP_NEIGHBORHOODS: config.top_neighborhoods,
        OutputStore.TOP_MUNICIPALITIES: config.top_municipalities,
        OutputStore.TOP_POLICE_STATIONS: config.top_police_stations,
    }
    ok = True
    for name, cap in limits.items():
        items = outputs.load_document(name) or []
        if len(items) > cap:
            logger.error(f"❌ {name} holds {len(items)} items (cap {cap})")
            ok = False
    if ok:
        logger.info("✅ Samples and rankings within capacity")
    return ok


def _is_descending(counts) -> bool:
    return all(a >= b for a, b in zip(counts, counts[1:]))


def check_rankings(outputs: OutputStore) -> bool:
    """Check that every top list is sorted by count, descending."""
    aggregate = outputs.load_aggregate()
    lists = {
        'top10MarcasMaisRoubadas': [count for _, count in aggregate.top_brands],
        OutputStore.TOP_NEIGHBORHOODS: [e['count'] for e in outputs.load_document(OutputStore.TOP_NEIGHBORHOODS) or []],
        OutputStore.TOP_MUNICIPALITIES: [e['count'] for e in outputs.load_document(OutputStore.TOP_MUNICIPALITIES) or []],
        OutputStore.TOP_POLICE_STATIONS: [e['count'] for e in outputs.load_document(OutputStore.TOP_POLICE_STATIONS) or []],
    }
    ok = True
    for name, counts in lists.items():
        if not _is_descending(counts):
            logger.error(f"❌ {name} is not sorted by count")
            ok = False
    if ok:
        logger.info("✅ Rankings sorted descending")
    return ok


def check_counters(outputs: OutputStore, store: FingerprintStore) -> bool:
    """Check counters and cross-document consistency."""
    aggregate = outputs.load_aggregate()
    ok = True

    for dim in DIMENSIONS:
        negative = {k: v for k, v in aggregate.counters[dim].items() if v < 0}
        if negative:
            logger.error(f"❌ {dim} has negative counts: {negative}")
            ok = False
        if sum(aggregate.counters[dim].values()) > aggregate.total_records:
            logger.error(f"❌ {dim} counts more records than totalRegistros")
            ok = False

    if aggregate.partitions != store.digests():
        logger.error("❌ estatisticas.json and processing-state.json disagree on merged partitions")
        ok = False

    stored_total = sum(store.get(key).record_count for key in store.all())
    if stored_total != aggregate.total_records:
        logger.error(f"❌ totalRegistros={aggregate.total_records:,} but partitions sum to {stored_total:,}")
        ok = False

    if ok:
        logger.info(f"✅ Counters consistent ({aggregate.total_records:,} records, "
                    f"{len(aggregate.partitions)} partitions)")
    return ok


def check_audit(raw_file: Path, store: FingerprintStore) -> bool:
    """Recount a raw extract with DuckDB and compare with the stored summaries."""
    frame = SourceReader().read(raw_file)
    findings = PartitionAuditor(store).audit(frame)
    # Partitions never processed (e.g. an unavailable year) are not failures
    mismatches = [f for f in findings if f.field != 'fingerprint']
    for finding in mismatches[:20]:
        logger.error(f"❌ {finding}")
    return not mismatches


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Validate the published documents")
    parser.add_argument('--data-dir', type=Path, default=None,
                        help='Directory holding the published JSON documents')
    parser.add_argument('--raw-file', type=Path, default=None,
                        help='Raw yearly extract to audit against the stored summaries')
    args = parser.parse_args(argv)

    config = PipelineConfig.from_env().with_overrides(data_dir=args.data_dir)

    logger.info("="*70)
    logger.info("Vehicle-theft statistics - Output Validation")
    logger.info("="*70)
    logger.info("")

    logger.info("1. Checking documents...")
    if not check_files(config.data_dir):
        return 1
    logger.info("")

    try:
        outputs = OutputStore(config.data_dir)
        store = FingerprintStore(config.data_dir / FingerprintStore.FILENAME)

        checks = []
        logger.info("2. Checking capacities...")
        checks.append(check_caps(outputs, config))
        logger.info("")

        logger.info("3. Checking rankings...")
        checks.append(check_rankings(outputs))
        logger.info("")

        logger.info("4. Checking counters...")
        checks.append(check_counters(outputs, store))
        logger.info("")

        if args.raw_file:
            logger.info(f"5. Auditing against {args.raw_file.name}...")
            checks.append(check_audit(args.raw_file, store))
            logger.info("")
    except StateDivergence as e:
        logger.error(f"❌ {e}")
        return 2

    logger.info("="*70)
    logger.info("Validation Summary")
    logger.info("="*70)
    if all(checks):
        logger.info("✅ All checks passed!")
        return 0
    logger.error("❌ Some checks failed!")
    return 1


if __name__ == "__main__":
    sys.exit(main())
