#!/usr/bin/env python3
"""
Test 1: Partition keys & mutability policy
==========================================

Which partitions get (re)processed for a given "now".
"""

from datetime import datetime

import pytest

from ssp_rollup.core.aggregator import PartitionSummary
from ssp_rollup.core.fingerprint_store import FingerprintStore
from ssp_rollup.core.partition import PartitionKey
from ssp_rollup.core.policy import (
    eligible_partitions, is_mutable, needs_reprocessing, partitions_for_year,
)

NOW = datetime(2024, 3, 20, 9, 0)


@pytest.fixture
def store(tmp_path):
    return FingerprintStore(tmp_path / FingerprintStore.FILENAME)


def test_previous_of_january_is_december_of_previous_year():
    assert PartitionKey(2024, 1).previous() == PartitionKey(2023, 12)
    assert PartitionKey(2024, 7).previous() == PartitionKey(2024, 6)


def test_labels_and_ordering():
    key = PartitionKey.from_label('2024-03')
    assert key == PartitionKey(2024, 3)
    assert key.label == '2024-03'
    assert PartitionKey(2023, 12) < PartitionKey(2024, 1)


@pytest.mark.parametrize('label', ['2024-13', '2024', 'abcd-ef'])
def test_invalid_labels_rejected(label):
    with pytest.raises(ValueError):
        PartitionKey.from_label(label)


def test_current_and_previous_month_always_reprocessed(store):
    store.record_processed(PartitionKey(2024, 3), PartitionSummary(), 0)
    store.record_processed(PartitionKey(2024, 2), PartitionSummary(), 0)

    assert needs_reprocessing(PartitionKey(2024, 3), NOW, store)
    assert needs_reprocessing(PartitionKey(2024, 2), NOW, store)
    assert is_mutable(PartitionKey(2024, 2), NOW)
    assert not is_mutable(PartitionKey(2024, 1), NOW)


def test_january_now_makes_previous_december_mutable():
    assert is_mutable(PartitionKey(2023, 12), datetime(2024, 1, 5))


def test_older_partition_processed_once(store):
    key = PartitionKey(2022, 5)
    assert needs_reprocessing(key, NOW, store)

    store.record_processed(key, PartitionSummary(), 0)
    assert not needs_reprocessing(key, NOW, store)


def test_partitions_for_year():
    assert partitions_for_year(2024, NOW) == [
        PartitionKey(2024, 3), PartitionKey(2024, 2), PartitionKey(2024, 1),
    ]
    past = partitions_for_year(2023, NOW)
    assert len(past) == 12
    assert past[0] == PartitionKey(2023, 12)
    assert past[-1] == PartitionKey(2023, 1)
    assert partitions_for_year(2025, NOW) == []


def test_eligible_partitions_skip_processed(store):
    for month in range(1, 13):
        store.record_processed(PartitionKey(2023, month), PartitionSummary(), 0)
    assert eligible_partitions(2023, NOW, store) == []

    store_2024 = eligible_partitions(2024, NOW, store)
    assert store_2024 == [PartitionKey(2024, 3), PartitionKey(2024, 2), PartitionKey(2024, 1)]
