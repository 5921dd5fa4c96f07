#!/usr/bin/env python3
"""
Partition Aggregator - per-dimension counters for one partition

Turns the normalized records of a single (year, month) partition into a
PartitionSummary: one label -> count counter per dimension.

Key features:
- Single pass: records are loaded into one Polars frame and every
  dimension is a group-by over it
- Missing values are counted under "UNKNOWN", never dropped
- Labels keep first-observed order (maintain_order=True), which is what
  the brand ranking tie-break relies on
- Date-derived dimensions skip records with no date; hour-derived ones
  skip records with no valid hour
- Zero records yields an all-zero summary
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence

import polars as pl

from .extractor import NormalizedRecord

logger = logging.getLogger(__name__)


UNKNOWN = 'UNKNOWN'

HOURS = [f"{h:02d}" for h in range(24)]
WEEKDAYS = [
    'domingo', 'segunda-feira', 'terça-feira', 'quarta-feira',
    'quinta-feira', 'sexta-feira', 'sábado',
]
PERIODS = ['Madrugada', 'Manhã', 'Tarde', 'Noite']

# Dimensions whose labels are known up front; they are always present,
# at zero when nothing was counted.
FIXED_LABELS: Dict[str, List[str]] = {
    'porHora': HOURS,
    'porDiaSemana': WEEKDAYS,
    'porPeriodo': PERIODS,
}

# Counter dimensions, in document order.
DIMENSIONS = [
    'porRubrica',
    'porMunicipio',
    'porBairro',
    'porDelegacia',
    'porMesAno',
    'porAno',
    'porMes',
    'porDiaSemana',
    'porHora',
    'porPeriodo',
    'porTipoVeiculo',
    'porMarcaVeiculo',
    'porCorVeiculo',
    'porAnoFabricacao',
    'porMarcaRoubada',   # robbery-only brand counts, feeds the top-10 ranking
]

ROBBERY_MARKER = 'ROUBO'
MIN_MANUFACTURE_YEAR = 1950

Counter = Dict[str, int]


def empty_counters() -> Dict[str, Counter]:
    return {
        dim: dict.fromkeys(FIXED_LABELS.get(dim, ()), 0)
        for dim in DIMENSIONS
    }


@dataclass
class PartitionSummary:
    """Everything one partition contributes to the global aggregate."""
    total_records: int = 0
    counters: Dict[str, Counter] = field(default_factory=empty_counters)
    autoria: Counter = field(default_factory=lambda: {'conhecida': 0, 'desconhecida': 0})
    flagrante: Counter = field(default_factory=lambda: {'sim': 0, 'nao': 0})

    def to_dict(self) -> dict:
        doc = {'totalRegistros': self.total_records}
        doc.update(copy.deepcopy(self.counters))
        doc['porAutoria'] = dict(self.autoria)
        doc['porFlagrante'] = dict(self.flagrante)
        return doc

    @classmethod
    def from_dict(cls, doc: dict) -> "PartitionSummary":
        """Inverse of to_dict. Raises KeyError/TypeError/ValueError on a bad document."""
        counters = empty_counters()
        for dim in DIMENSIONS:
            for label, count in doc[dim].items():
                counters[dim][str(label)] = int(count)
        return cls(
            total_records=int(doc['totalRegistros']),
            counters=counters,
            autoria={k: int(doc['porAutoria'][k]) for k in ('conhecida', 'desconhecida')},
            flagrante={k: int(doc['porFlagrante'][k]) for k in ('sim', 'nao')},
        )


# Polars schema for the record frame
RECORD_SCHEMA = {
    'rubrica': pl.Utf8,
    'municipio': pl.Utf8,
    'bairro': pl.Utf8,
    'delegacia': pl.Utf8,
    'data': pl.Date,
    'hora': pl.Int32,
    'tipo_veiculo': pl.Utf8,
    'marca_veiculo': pl.Utf8,
    'cor_veiculo': pl.Utf8,
    'ano_fabricacao': pl.Int32,
    'autoria_conhecida': pl.Boolean,
    'flagrante': pl.Boolean,
}

LABEL_COLUMNS = ['rubrica', 'municipio', 'bairro', 'delegacia',
                 'tipo_veiculo', 'marca_veiculo', 'cor_veiculo']


def _label(column: str) -> pl.Expr:
    label = pl.col(column).str.strip_chars().str.to_uppercase()
    return pl.when(label.is_null() | (label == '')).then(pl.lit(UNKNOWN)).otherwise(label)


def _count(df: pl.DataFrame, column: str) -> Counter:
    """Non-null values of `column` -> occurrences, in first-seen order."""
    counts = (
        df.filter(pl.col(column).is_not_null())
        .group_by(column, maintain_order=True)
        .agg(pl.len().alias('count'))
    )
    return dict(zip(counts[column].to_list(), counts['count'].to_list()))


class PartitionAggregator:
    """
    Builds PartitionSummary objects from normalized records.

    Args:
        today: Reference date for the manufacture-year sanity bound
               (defaults to the current date)
    """

    def __init__(self, today: Optional[date] = None):
        self.today = today or date.today()

    def to_frame(self, records: Sequence[NormalizedRecord]) -> pl.DataFrame:
        columns = {name: [getattr(r, name) for r in records] for name in RECORD_SCHEMA}
        return pl.DataFrame(columns, schema=RECORD_SCHEMA)

    def aggregate(self, records: Sequence[NormalizedRecord]) -> PartitionSummary:
        """
        Count one partition's records along every dimension.

        Args:
            records: Normalized records of a single partition

        Returns:
            PartitionSummary (all zeros for an empty partition)
        """
        summary = PartitionSummary()
        if not records:
            return summary

        df = self.to_frame(records).with_columns(
            [_label(c).alias(c) for c in LABEL_COLUMNS]
        ).with_columns([
            pl.col('data').dt.strftime('%Y/%m').alias('mes_ano'),
            pl.col('data').dt.strftime('%Y').alias('ano'),
            pl.col('data').dt.month().alias('mes'),
            # ISO weekday (Mon=1..Sun=7) -> Sunday-first index
            (pl.col('data').dt.weekday() % 7).alias('dia_semana'),
            pl.when(pl.col('hora') < 6).then(pl.lit(PERIODS[0]))
              .when(pl.col('hora') < 12).then(pl.lit(PERIODS[1]))
              .when(pl.col('hora') < 18).then(pl.lit(PERIODS[2]))
              .when(pl.col('hora') < 24).then(pl.lit(PERIODS[3]))
              .otherwise(None)
              .alias('periodo'),
            pl.when(
                (pl.col('ano_fabricacao') > MIN_MANUFACTURE_YEAR)
                & (pl.col('ano_fabricacao') <= self.today.year)
            ).then(pl.col('ano_fabricacao')).otherwise(None).alias('ano_fabricacao'),
        ])

        counters = summary.counters
        counters['porRubrica'].update(_count(df, 'rubrica'))
        counters['porMunicipio'].update(_count(df, 'municipio'))
        counters['porBairro'].update(_count(df, 'bairro'))
        counters['porDelegacia'].update(_count(df, 'delegacia'))
        counters['porTipoVeiculo'].update(_count(df, 'tipo_veiculo'))
        counters['porMarcaVeiculo'].update(_count(df, 'marca_veiculo'))
        counters['porCorVeiculo'].update(_count(df, 'cor_veiculo'))

        counters['porMesAno'].update(_count(df, 'mes_ano'))
        counters['porAno'].update(_count(df, 'ano'))
        counters['porMes'].update({str(m): n for m, n in _count(df, 'mes').items()})
        for index, n in _count(df, 'dia_semana').items():
            counters['porDiaSemana'][WEEKDAYS[index]] += n

        for hour, n in _count(df, 'hora').items():
            counters['porHora'][f"{hour:02d}"] += n
        for period, n in _count(df, 'periodo').items():
            counters['porPeriodo'][period] += n

        counters['porAnoFabricacao'].update(
            {str(y): n for y, n in _count(df, 'ano_fabricacao').items()}
        )

        robberies = df.filter(pl.col('rubrica').str.contains(ROBBERY_MARKER, literal=True))
        counters['porMarcaRoubada'].update(_count(robberies, 'marca_veiculo'))

        known = int(df['autoria_conhecida'].sum())
        flagrant = int(df['flagrante'].sum())
        summary.total_records = df.height
        summary.autoria = {'conhecida': known, 'desconhecida': df.height - known}
        summary.flagrante = {'sim': flagrant, 'nao': df.height - flagrant}

        logger.debug(f"Aggregated {df.height:,} records "
                     f"({len(counters['porRubrica'])} rubricas, "
                     f"{len(counters['porMunicipio'])} municipios)")
        return summary
