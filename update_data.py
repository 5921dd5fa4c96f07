#!/usr/bin/env python3
"""
Update Phase: Refresh the dashboard statistics from the yearly extracts

This script:
1. Loads the published documents and the processing state
2. Reprocesses the current and previous month, plus any partition never
   processed before
3. Writes estatisticas.json, the map/recent samples, the top lists and
   processing-state.json after every partition

Usage:
    python3 update_data.py --data-dir ./data
    python3 update_data.py --source-url 'https://example.org/VeiculosSubtraidos_{year}.csv'
    python3 update_data.py --init      # create empty base documents only
"""

import sys
import time
from pathlib import Path
import argparse
import logging

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from ssp_rollup.core import IncrementalPipeline, OutputStore, PipelineConfig, StateDivergence

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Polars parallelism for the CSV-to-frame conversion
import os
cores = os.cpu_count() or 8
os.environ.setdefault('POLARS_MAX_THREADS', str(cores))


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Incrementally refresh vehicle-theft statistics"
    )
    parser.add_argument(
        '--data-dir',
        type=Path,
        default=None,
        help='Directory holding the published JSON documents (default: data)'
    )
    parser.add_argument(
        '--raw-dir',
        type=Path,
        default=None,
        help='Directory holding VeiculosSubtraidos_<year>.csv (default: <data-dir>/raw)'
    )
    parser.add_argument(
        '--source-url',
        default=None,
        help='Download URL template with a {year} placeholder; local files only when omitted'
    )
    parser.add_argument(
        '--first-year',
        type=int,
        default=None,
        help='Oldest year to consider (default: 2020)'
    )
    parser.add_argument(
        '--max-attempts',
        type=int,
        default=None,
        help='Download attempts per year before giving up for this run'
    )
    parser.add_argument(
        '--init',
        action='store_true',
        help='Only create the empty base documents'
    )
    return parser.parse_args(argv)


def build_config(args) -> PipelineConfig:
    config = PipelineConfig.from_env()
    raw_dir = args.raw_dir
    if raw_dir is None and args.data_dir is not None:
        raw_dir = args.data_dir / 'raw'
    return config.with_overrides(
        data_dir=args.data_dir,
        raw_dir=raw_dir,
        source_url_template=args.source_url,
        first_year=args.first_year,
        max_attempts=args.max_attempts,
    )


def main(argv=None) -> int:
    args = parse_args(argv)
    config = build_config(args)

    print("="*70)
    print("UPDATE PHASE: Incremental Statistics Refresh")
    print("="*70)
    print()
    print(f"Data directory:   {config.data_dir}")
    print(f"Raw directory:    {config.raw_dir}")
    print(f"Source:           {config.source_url_template or 'local files'}")
    print()

    if args.init:
        created = OutputStore(config.data_dir).ensure_base_files()
        logger.info(f"✅ Base documents ready ({len(created)} created)")
        return 0

    start_time = time.time()
    try:
        pipeline = IncrementalPipeline(config)
        report = pipeline.run()
    except StateDivergence as e:
        logger.error(f"❌ Persisted state diverged, refusing to continue: {e}")
        return 2

    stats = pipeline.storage_summary()
    elapsed = time.time() - start_time

    logger.info("")
    logger.info("="*70)
    logger.info("UPDATE COMPLETE")
    logger.info("="*70)
    logger.info(f"Partitions processed: {len(report.processed)}")
    logger.info(f"Partitions unchanged: {report.skipped}")
    if report.failed_years:
        logger.warning(f"⚠️  Years unavailable this run: {', '.join(map(str, report.failed_years))}")
    logger.info(f"Records merged:       {report.records:,}")
    logger.info(f"Documents:            {stats['file_count']} ({stats['total_size_mb']:.1f} MB)")
    logger.info(f"Total time:           {elapsed:.1f}s")
    logger.info("="*70)
    return 0


if __name__ == "__main__":
    sys.exit(main())
