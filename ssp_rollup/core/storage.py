#!/usr/bin/env python3
"""
Output Store - JSON documents consumed by the dashboard

Every document is written to a temporary file next to its target and
moved into place with os.replace, so a reader (or a crash) never sees a
half-written file.

Key features:
- estatisticas.json plus estatisticas-backup.json, the aggregate as it
  was before the partition being written was merged
- mapa-ocorrencias.json / ocorrencias-recentes.json bounded samples
- top-bairros.json / top-municipios.json / top-delegacias.json rankings
- Absent files load as empty defaults; corrupt ones are a StateDivergence
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from .errors import StateDivergence
from .merger import GlobalAggregate
from .samples import BoundedSample

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, payload) -> Path:
    """Serialize `payload` to `path` via a temp file + rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + '.tmp')
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)
    return path


def _read_json(path: Path):
    try:
        with open(path, encoding='utf-8') as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise StateDivergence(f"{path} is unreadable: {e}") from e


class OutputStore:
    """
    Reads and writes the published documents.

    Directory structure:
        data/
            estatisticas.json
            estatisticas-backup.json
            mapa-ocorrencias.json
            ocorrencias-recentes.json
            top-bairros.json
            top-municipios.json
            top-delegacias.json
            processing-state.json     (FingerprintStore)
    """

    STATISTICS = 'estatisticas.json'
    STATISTICS_BACKUP = 'estatisticas-backup.json'
    MAP = 'mapa-ocorrencias.json'
    RECENT = 'ocorrencias-recentes.json'
    TOP_NEIGHBORHOODS = 'top-bairros.json'
    TOP_MUNICIPALITIES = 'top-municipios.json'
    TOP_POLICE_STATIONS = 'top-delegacias.json'

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Output store initialized: {self.data_dir}")

    def path(self, name: str) -> Path:
        return self.data_dir / name

    def write_aggregate(self, aggregate: GlobalAggregate) -> Path:
        return write_json_atomic(self.path(self.STATISTICS), aggregate.to_document())

    def write_backup(self, aggregate: GlobalAggregate) -> Path:
        """Checkpoint of the aggregate that matches the processing state on disk."""
        return write_json_atomic(self.path(self.STATISTICS_BACKUP), aggregate.to_document())

    def write_samples(self, map_sample: BoundedSample, recent_sample: BoundedSample):
        write_json_atomic(self.path(self.MAP), map_sample.contents())
        write_json_atomic(self.path(self.RECENT), recent_sample.contents())

    def write_rankings(self, neighborhoods: List[dict], municipalities: List[dict],
                       police_stations: List[dict]):
        write_json_atomic(self.path(self.TOP_NEIGHBORHOODS), neighborhoods)
        write_json_atomic(self.path(self.TOP_MUNICIPALITIES), municipalities)
        write_json_atomic(self.path(self.TOP_POLICE_STATIONS), police_stations)

    def _load_aggregate(self, name: str) -> Optional[GlobalAggregate]:
        path = self.path(name)
        if not path.exists():
            return None
        doc = _read_json(path)
        try:
            return GlobalAggregate.from_document(doc)
        except (AttributeError, TypeError, ValueError) as e:
            raise StateDivergence(f"{path} does not hold an aggregate: {e!r}") from e

    def load_aggregate(self) -> GlobalAggregate:
        return self._load_aggregate(self.STATISTICS) or GlobalAggregate()

    def load_backup(self) -> Optional[GlobalAggregate]:
        return self._load_aggregate(self.STATISTICS_BACKUP)

    def load_sample(self, name: str, capacity: int) -> BoundedSample:
        path = self.path(name)
        if not path.exists():
            return BoundedSample(capacity)
        items = _read_json(path)
        if not isinstance(items, list):
            raise StateDivergence(f"{path} is not a JSON list")
        return BoundedSample(capacity, items)

    def load_document(self, name: str) -> Optional[object]:
        path = self.path(name)
        return _read_json(path) if path.exists() else None

    def ensure_base_files(self) -> List[Path]:
        """Create any missing document with its empty default."""
        defaults = {
            self.STATISTICS: GlobalAggregate().to_document(),
            self.MAP: [],
            self.RECENT: [],
            self.TOP_NEIGHBORHOODS: [],
            self.TOP_MUNICIPALITIES: [],
            self.TOP_POLICE_STATIONS: [],
        }
        created = []
        for name, payload in defaults.items():
            if not self.path(name).exists():
                created.append(write_json_atomic(self.path(name), payload))
                logger.info(f"✅ Created {name}")
        return created

    def get_storage_stats(self) -> Dict:
        """
        Get statistics about the stored documents.

        Returns:
            Dictionary with file count, total size and per-file sizes
        """
        stats = {
            'file_count': 0,
            'total_size_mb': 0,
            'files': {}
        }
        for json_file in sorted(self.data_dir.glob("*.json")):
            size_mb = json_file.stat().st_size / (1024 * 1024)
            stats['file_count'] += 1
            stats['total_size_mb'] += size_mb
            stats['files'][json_file.name] = {'size_mb': size_mb}
        return stats
