#!/usr/bin/env python3
"""
Test 6: Output documents & fingerprint store
============================================
"""

import json

import pytest

from ssp_rollup.core.aggregator import PartitionSummary
from ssp_rollup.core.config import PipelineConfig
from ssp_rollup.core.errors import StateDivergence
from ssp_rollup.core.fingerprint_store import FingerprintStore
from ssp_rollup.core.merger import GlobalAggregate
from ssp_rollup.core.partition import PartitionKey
from ssp_rollup.core.samples import BoundedSample
from ssp_rollup.core.storage import OutputStore, write_json_atomic


def test_atomic_write_leaves_no_temp_file(tmp_path):
    path = write_json_atomic(tmp_path / 'nested' / 'doc.json', {'a': 'ã'})
    assert json.loads(path.read_text(encoding='utf-8')) == {'a': 'ã'}
    assert [p.name for p in path.parent.iterdir()] == ['doc.json']


def test_missing_documents_load_as_empty(tmp_path):
    outputs = OutputStore(tmp_path)
    assert outputs.load_aggregate() == GlobalAggregate()
    assert len(outputs.load_sample(OutputStore.MAP, 10)) == 0


def test_backup_kept_apart_from_aggregate(tmp_path):
    outputs = OutputStore(tmp_path)
    assert outputs.load_backup() is None

    before = GlobalAggregate(total_records=4, partitions={'2024-02': 'abc'})
    after = GlobalAggregate(total_records=7, partitions={'2024-02': 'abc', '2024-03': 'def'})
    outputs.write_backup(before)
    outputs.write_aggregate(after)

    assert outputs.load_aggregate() == after
    assert outputs.load_backup() == before


def test_corrupt_backup_is_divergence(tmp_path):
    (tmp_path / OutputStore.STATISTICS_BACKUP).write_text('[]')
    with pytest.raises(StateDivergence):
        OutputStore(tmp_path).load_backup()


def test_corrupt_aggregate_is_divergence(tmp_path):
    (tmp_path / OutputStore.STATISTICS).write_text('{not json')
    with pytest.raises(StateDivergence):
        OutputStore(tmp_path).load_aggregate()


def test_samples_round_trip(tmp_path):
    outputs = OutputStore(tmp_path)
    sample = BoundedSample(3).admit([{'id': 1}, {'id': 2}])
    outputs.write_samples(sample, BoundedSample(3))
    assert outputs.load_sample(OutputStore.MAP, 3).contents() == [{'id': 1}, {'id': 2}]


def test_sample_loaded_with_lower_capacity_keeps_front(tmp_path):
    outputs = OutputStore(tmp_path)
    outputs.write_samples(BoundedSample(4).admit([{'id': i} for i in range(4)]), BoundedSample(1))
    assert outputs.load_sample(OutputStore.MAP, 2).contents() == [{'id': 0}, {'id': 1}]


def test_ensure_base_files(tmp_path):
    outputs = OutputStore(tmp_path)
    created = outputs.ensure_base_files()
    assert len(created) == 6
    assert (tmp_path / OutputStore.TOP_POLICE_STATIONS).read_text(encoding='utf-8') == '[]'
    assert outputs.ensure_base_files() == []
    assert outputs.get_storage_stats()['file_count'] == 6


def test_fingerprint_store_persists(tmp_path):
    path = tmp_path / FingerprintStore.FILENAME
    store = FingerprintStore(path)
    summary = PartitionSummary(total_records=3)
    store.record_processed(PartitionKey(2024, 3), summary, 3, 'abc', processed_at='2024-03-20T09:00:00')

    reloaded = FingerprintStore(path)
    fingerprint = reloaded.get(PartitionKey(2024, 3))
    assert fingerprint.record_count == 3
    assert fingerprint.digest == 'abc'
    assert fingerprint.stored_summary == summary
    assert reloaded.all() == {PartitionKey(2024, 3)}
    assert reloaded.digests() == {'2024-03': 'abc'}
    assert reloaded.get(PartitionKey(2024, 2)) is None


def test_unreadable_state_is_divergence(tmp_path):
    path = tmp_path / FingerprintStore.FILENAME
    path.write_text('[1, 2]')
    with pytest.raises(StateDivergence):
        FingerprintStore(path)


def test_unreadable_stored_summary_is_divergence(tmp_path):
    path = tmp_path / FingerprintStore.FILENAME
    path.write_text(json.dumps({'2024-03': {'recordCount': 1, 'summary': {'totalRegistros': 1}}}))
    with pytest.raises(StateDivergence):
        FingerprintStore(path).get(PartitionKey(2024, 3))


def test_config_from_env_and_overrides(tmp_path):
    config = PipelineConfig.from_env({
        'SSP_DATA_DIR': str(tmp_path),
        'SSP_FIRST_YEAR': '2019',
        'SSP_SOURCE_URL': 'https://example.org/{year}.csv',
    })
    assert config.data_dir == tmp_path
    assert config.raw_dir == tmp_path / 'raw'
    assert config.first_year == 2019

    overridden = config.with_overrides(first_year=2022, max_attempts=None)
    assert overridden.first_year == 2022
    assert overridden.max_attempts == config.max_attempts
