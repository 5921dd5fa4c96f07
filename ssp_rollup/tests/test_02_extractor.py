#!/usr/bin/env python3
"""
Test 2: Source reader & partition extractor
===========================================

Alias fallback, cell parsing, partition assignment and CSV reading.
"""

from datetime import date

import pytest

from ssp_rollup.core.extractor import (
    SourceReader, column_value, extract_partition, normalize_row, parse_coordinate,
    parse_date, parse_hour, partition_of, records_digest, split_by_partition,
)
from ssp_rollup.core.partition import PartitionKey


def test_alias_fallback_resolves_cidade():
    row = {'CIDADE': 'CAMPINAS', 'RUBRICA': 'Furto de veículo'}
    assert column_value(row, 'NOME_MUNICIPIO') == 'CAMPINAS'
    assert normalize_row(row).municipio == 'CAMPINAS'


def test_first_present_alias_wins_even_when_empty():
    row = {'NOME_MUNICIPIO': '', 'CIDADE': 'CAMPINAS'}
    assert column_value(row, 'NOME_MUNICIPIO') is None


@pytest.mark.parametrize('raw, expected', [
    ('15/03/2024', date(2024, 3, 15)),
    (' 01/12/2023 ', date(2023, 12, 1)),
    ('null', None),
    ('', None),
    (None, None),
    ('2024-03-15', None),
    ('31/02/2024', None),
])
def test_parse_date(raw, expected):
    assert parse_date(raw) == expected


@pytest.mark.parametrize('raw, expected', [
    ('14:30', 14),
    ('00:05:00', 0),
    ('7', 7),
    ('24:00', None),
    ('xx', None),
    (None, None),
])
def test_parse_hour(raw, expected):
    assert parse_hour(raw) == expected


def test_parse_coordinate_accepts_decimal_comma():
    assert parse_coordinate('-23,5505') == pytest.approx(-23.5505)
    assert parse_coordinate('0') is None
    assert parse_coordinate('NaN') is None
    assert parse_coordinate('abc') is None


def test_authorship_and_flagrant_flags(make_row):
    assert normalize_row(make_row(AUTORIA_BO='Conhecida')).autoria_conhecida
    assert not normalize_row(make_row(AUTORIA_BO='Desconhecida')).autoria_conhecida
    assert normalize_row(make_row(FLAG_FLAGRANTE='S')).flagrante
    assert not normalize_row(make_row(FLAG_FLAGRANTE='N')).flagrante


def test_partition_of_uses_date_then_ano_mes(make_row):
    assert partition_of(make_row()) == PartitionKey(2024, 3)
    assert partition_of(make_row(DATA_OCORRENCIA_BO='null', ANO='2023', MES='11')) == PartitionKey(2023, 11)
    assert partition_of(make_row(DATA_OCORRENCIA_BO='', ANO='', MES='')) is None


@pytest.mark.parametrize('ano, mes', [('inf', '3'), ('2024', 'inf'), ('1e12', '3'), ('2024', '-nan')])
def test_partition_of_rejects_out_of_range_ano_mes(make_row, ano, mes):
    assert partition_of(make_row(DATA_OCORRENCIA_BO='null', ANO=ano, MES=mes)) is None


@pytest.mark.parametrize('raw', ['inf', '-inf', '1e12', '-5'])
def test_manufacture_year_out_of_range_is_missing(make_row, raw):
    assert normalize_row(make_row(ANO_FABRICACAO=raw)).ano_fabricacao is None


def test_split_by_partition_counts_unassigned(make_rows, make_row):
    rows = make_rows(2, day='10/02/2024') + make_rows(3) + [
        make_row(DATA_OCORRENCIA_BO=None, ANO=None, MES=None),
    ]
    partitions, unassigned = split_by_partition(rows)
    assert {k: len(v) for k, v in partitions.items()} == {
        PartitionKey(2024, 2): 2,
        PartitionKey(2024, 3): 3,
    }
    assert unassigned == 1


def test_extract_partition_keeps_undated_rows(make_rows, make_row):
    rows = make_rows(2) + [make_row(DATA_OCORRENCIA_BO='null')] + make_rows(1, day='01/01/2024')
    records = extract_partition(rows, PartitionKey(2024, 3))
    assert len(records) == 3
    assert sum(r.data is None for r in records) == 1


def test_digest_changes_with_content(make_rows):
    key = PartitionKey(2024, 3)
    first = extract_partition(make_rows(3), key)
    again = extract_partition(make_rows(3), key)
    changed = extract_partition(make_rows(3, DESCR_MARCA_VEICULO='VW'), key)
    assert records_digest(first) == records_digest(again)
    assert records_digest(first) != records_digest(changed)


def test_reader_reads_all_columns_as_text(tmp_path, write_csv, make_rows):
    path = write_csv(tmp_path / 'VeiculosSubtraidos_2024.csv', make_rows(5))
    df = SourceReader().read(path)

    assert df.height == 5
    assert df['ANO_FABRICACAO'].to_list() == ['2015'] * 5
    rows = list(SourceReader().iter_rows(path))
    assert rows[0]['NOME_MUNICIPIO'] == 'S.PAULO'


def test_reader_skips_malformed_rows(tmp_path, write_csv, make_rows):
    path = write_csv(tmp_path / 'broken.csv', make_rows(3))
    with open(path, 'a', encoding='utf-8') as f:
        f.write('too;many;' + ';' * 40 + '\n')

    reader = SourceReader()
    df = reader.read(path)
    assert df.height == 3
    assert reader.malformed_rows == 1


def test_reader_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        SourceReader().read(tmp_path / 'absent.csv')
