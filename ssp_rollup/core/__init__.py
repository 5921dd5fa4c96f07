"""
Core modules for the incremental statistics rollup.
"""

from .errors import RollupError, TransientSourceError, MalformedRow, StateDivergence
from .partition import PartitionKey
from .config import PipelineConfig
from .extractor import SourceReader, NormalizedRecord, extract_partition, split_by_partition
from .aggregator import PartitionAggregator, PartitionSummary
from .merger import GlobalAggregate, merge
from .samples import BoundedSample
from .ranking import top_n, top_neighborhoods, top_municipalities, top_police_stations
from .storage import OutputStore
from .fingerprint_store import FingerprintStore, PartitionFingerprint
from .policy import needs_reprocessing, partitions_for_year
from .downloader import SourceDownloader, RetryPolicy
from .auditor import PartitionAuditor, AuditFinding
from .pipeline import IncrementalPipeline, RunReport

__all__ = [
    'RollupError',
    'TransientSourceError',
    'MalformedRow',
    'StateDivergence',
    'PartitionKey',
    'PipelineConfig',
    'SourceReader',
    'NormalizedRecord',
    'extract_partition',
    'split_by_partition',
    'PartitionAggregator',
    'PartitionSummary',
    'GlobalAggregate',
    'merge',
    'BoundedSample',
    'top_n',
    'top_neighborhoods',
    'top_municipalities',
    'top_police_stations',
    'OutputStore',
    'FingerprintStore',
    'PartitionFingerprint',
    'needs_reprocessing',
    'partitions_for_year',
    'SourceDownloader',
    'RetryPolicy',
    'PartitionAuditor',
    'AuditFinding',
    'IncrementalPipeline',
    'RunReport',
]
