"""
Partition Fingerprint Store

Remembers, per partition, what was merged last time: record count,
records digest, timestamp and the exact summary that went into the
aggregate. Backed by a single JSON document (processing-state.json)
that is rewritten whole, atomically, on every update.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Set

from .aggregator import PartitionSummary
from .errors import StateDivergence
from .partition import PartitionKey
from .storage import write_json_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionFingerprint:
    partition_key: PartitionKey
    record_count: int
    digest: str
    processed_at: str
    stored_summary: Optional[PartitionSummary]


class FingerprintStore:
    FILENAME = 'processing-state.json'

    def __init__(self, path: Path):
        self.path = Path(path)
        self._entries: Dict[str, dict] = self._load()

    def _load(self) -> Dict[str, dict]:
        if not self.path.exists():
            logger.info(f"No processing state at {self.path}; starting fresh")
            return {}
        try:
            with open(self.path, encoding='utf-8') as f:
                doc = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateDivergence(f"processing state {self.path} is unreadable: {e}") from e

        if not isinstance(doc, dict):
            raise StateDivergence(f"processing state {self.path} is not a JSON object")

        for label in doc:
            PartitionKey.from_label(label)
        logger.info(f"Loaded processing state: {len(doc)} partitions")
        return doc

    def get(self, key: PartitionKey) -> Optional[PartitionFingerprint]:
        entry = self._entries.get(key.label)
        if entry is None:
            return None

        summary = None
        if entry.get('summary') is not None:
            try:
                summary = PartitionSummary.from_dict(entry['summary'])
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise StateDivergence(f"stored summary for {key} is unreadable: {e!r}") from e

        return PartitionFingerprint(
            partition_key=key,
            record_count=int(entry.get('recordCount', 0)),
            digest=entry.get('digest', ''),
            processed_at=entry.get('processedAt', ''),
            stored_summary=summary,
        )

    def all(self) -> Set[PartitionKey]:
        return {PartitionKey.from_label(label) for label in self._entries}

    def digests(self) -> Dict[str, str]:
        return {label: entry.get('digest', '') for label, entry in self._entries.items()}

    def record_processed(
        self,
        key: PartitionKey,
        summary: PartitionSummary,
        record_count: int,
        digest: str = '',
        processed_at: Optional[str] = None,
    ) -> PartitionFingerprint:
        """Create or overwrite the fingerprint of `key` and persist the store."""
        processed_at = processed_at or datetime.now().isoformat(timespec='seconds')
        self._entries[key.label] = {
            'recordCount': record_count,
            'digest': digest,
            'processedAt': processed_at,
            'summary': summary.to_dict(),
        }
        self._write()
        return PartitionFingerprint(key, record_count, digest, processed_at, summary)

    def _write(self):
        ordered = dict(sorted(self._entries.items(), reverse=True))
        write_json_atomic(self.path, ordered)
