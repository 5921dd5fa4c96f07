#!/usr/bin/env python3
"""
Source Reader & Partition Extractor

Turns the yearly "VeiculosSubtraidos_<year>.csv" extracts into normalized
incident records, one (year, month) partition at a time.

Key features:
- Streaming CSV read with PyArrow (64MB blocks), handed to Polars zero-copy
- Every column read as text: the raw source mixes types freely
- Canonical column names with an ordered alias fallback (older years use
  CIDADE, DATA_OCORRENCIA, DESCR_COR_VEICULO, ...)
- Structurally broken lines are skipped and counted, never fatal
"""

import hashlib
import json
import logging
import math
import re
from dataclasses import dataclass, asdict
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import polars as pl
import pyarrow as pa
import pyarrow.csv as pc

from .errors import MalformedRow
from .partition import PartitionKey

logger = logging.getLogger(__name__)


# Canonical field -> candidate source columns, tried in order.
COLUMN_ALIASES: Dict[str, Tuple[str, ...]] = {
    'RUBRICA': ('RUBRICA',),
    'NOME_MUNICIPIO': ('NOME_MUNICIPIO', 'CIDADE', 'NOME_MUNICIPIO_CIRC'),
    'BAIRRO': ('BAIRRO',),
    'NOME_DELEGACIA': ('NOME_DELEGACIA', 'NOME_DELEGACIA_CIRC'),
    'DATA_OCORRENCIA_BO': ('DATA_OCORRENCIA_BO', 'DATA_OCORRENCIA'),
    'HORA_OCORRENCIA': ('HORA_OCORRENCIA', 'HORA_OCORRENCIA_BO'),
    'LATITUDE': ('LATITUDE',),
    'LONGITUDE': ('LONGITUDE',),
    'DESCR_TIPO_VEICULO': ('DESCR_TIPO_VEICULO',),
    'DESCR_MARCA_VEICULO': ('DESCR_MARCA_VEICULO',),
    'DESC_COR_VEICULO': ('DESC_COR_VEICULO', 'DESCR_COR_VEICULO'),
    'ANO_FABRICACAO': ('ANO_FABRICACAO',),
    'AUTORIA_BO': ('AUTORIA_BO',),
    'FLAG_FLAGRANTE': ('FLAG_FLAGRANTE',),
    'ANO': ('ANO', 'ANO_BO'),
    'MES': ('MES', 'MES_BO'),
}

# Integer cells only ever hold years and months
MAX_INT_CELL = 9999

_DATE_RE = re.compile(r'^(\d{2})/(\d{2})/(\d{4})$')


@dataclass(frozen=True)
class NormalizedRecord:
    """One incident, as extracted from a raw row."""
    rubrica: Optional[str]
    municipio: Optional[str]
    bairro: Optional[str]
    delegacia: Optional[str]
    data: Optional[date]
    data_raw: Optional[str]
    hora: Optional[int]
    hora_raw: Optional[str]
    tipo_veiculo: Optional[str]
    marca_veiculo: Optional[str]
    cor_veiculo: Optional[str]
    ano_fabricacao: Optional[int]
    autoria_conhecida: bool
    flagrante: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict:
        d = asdict(self)
        d['data'] = self.data.isoformat() if self.data else None
        return d


# ── Cell helpers ────────────────────────────────────────────────────

def sanitize(value) -> Optional[str]:
    """None, "" and literal "null" become None; strings are trimmed."""
    if value is None:
        return None
    text = str(value).replace('\r', ' ').replace('\n', ' ').strip()
    if not text or text.lower() == 'null':
        return None
    return text


def column_value(row: Mapping[str, object], field: str) -> Optional[str]:
    """
    Look up a canonical field in a raw row.

    The first candidate column present in the row wins, even when its cell
    is empty, so a year that ships both names never mixes them.
    """
    for column in COLUMN_ALIASES.get(field, (field,)):
        if column in row:
            return sanitize(row[column])
    return None


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a DD/MM/YYYY cell; anything else is "no date"."""
    text = sanitize(value)
    if text is None:
        return None
    match = _DATE_RE.match(text)
    if not match:
        return None
    day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_hour(value: Optional[str]) -> Optional[int]:
    """Hour of day (0-23) from "HH:MM[:SS]" or "HH"."""
    text = sanitize(value)
    if text is None:
        return None
    head = text.split(':')[0].strip()
    if not head.isdigit() or len(head) > 2:
        return None
    hour = int(head)
    return hour if 0 <= hour < 24 else None


def parse_coordinate(value: Optional[str]) -> Optional[float]:
    text = sanitize(value)
    if text is None:
        return None
    try:
        number = float(text.replace(',', '.'))
    except ValueError:
        return None
    if not math.isfinite(number) or number == 0:
        return None
    return number


def _parse_int(value: Optional[str]) -> Optional[int]:
    """Non-negative integer up to MAX_INT_CELL (years, months), else None."""
    text = sanitize(value)
    if text is None:
        return None
    try:
        number = int(float(text.replace(',', '.')))
    except (ValueError, OverflowError):
        return None
    return number if 0 <= number <= MAX_INT_CELL else None


def _authorship_known(value: Optional[str]) -> bool:
    label = (value or '').upper()
    return 'CONHECIDA' in label and 'DESCONHECIDA' not in label


def _flagrant(value: Optional[str]) -> bool:
    return (value or '').upper() in ('S', 'SIM')


# ── Partitioning ────────────────────────────────────────────────────

def partition_of(row: Mapping[str, object]) -> Optional[PartitionKey]:
    """
    Partition a raw row belongs to.

    Uses the incident date; rows with no usable date fall back to the
    ANO/MES columns so they are still counted in their month.
    """
    day = parse_date(column_value(row, 'DATA_OCORRENCIA_BO'))
    if day is not None:
        return PartitionKey.of(day)

    year = _parse_int(column_value(row, 'ANO'))
    month = _parse_int(column_value(row, 'MES'))
    if year is None or month is None or not 1 <= month <= 12:
        return None
    return PartitionKey(year, month)


def split_by_partition(
    rows: Iterable[Mapping[str, object]]
) -> Tuple[Dict[PartitionKey, List[Mapping[str, object]]], int]:
    """
    Group raw rows by partition.

    Returns:
        (partition -> rows, number of rows with no assignable partition)
    """
    partitions: Dict[PartitionKey, List[Mapping[str, object]]] = {}
    unassigned = 0
    for row in rows:
        key = partition_of(row)
        if key is None:
            unassigned += 1
            continue
        partitions.setdefault(key, []).append(row)

    if unassigned:
        logger.warning(f"⚠️  {unassigned:,} rows have neither a date nor ANO/MES; skipped")
    return partitions, unassigned


def normalize_row(row: Mapping[str, object]) -> NormalizedRecord:
    hora_raw = column_value(row, 'HORA_OCORRENCIA')
    data_raw = column_value(row, 'DATA_OCORRENCIA_BO')
    latitude = parse_coordinate(column_value(row, 'LATITUDE'))
    longitude = parse_coordinate(column_value(row, 'LONGITUDE'))
    if latitude is None or longitude is None:
        latitude = longitude = None

    return NormalizedRecord(
        rubrica=column_value(row, 'RUBRICA'),
        municipio=column_value(row, 'NOME_MUNICIPIO'),
        bairro=column_value(row, 'BAIRRO'),
        delegacia=column_value(row, 'NOME_DELEGACIA'),
        data=parse_date(data_raw),
        data_raw=data_raw,
        hora=parse_hour(hora_raw),
        hora_raw=hora_raw,
        tipo_veiculo=column_value(row, 'DESCR_TIPO_VEICULO'),
        marca_veiculo=column_value(row, 'DESCR_MARCA_VEICULO'),
        cor_veiculo=column_value(row, 'DESC_COR_VEICULO'),
        ano_fabricacao=_parse_int(column_value(row, 'ANO_FABRICACAO')),
        autoria_conhecida=_authorship_known(column_value(row, 'AUTORIA_BO')),
        flagrante=_flagrant(column_value(row, 'FLAG_FLAGRANTE')),
        latitude=latitude,
        longitude=longitude,
    )


def extract_partition(
    rows: Iterable[Mapping[str, object]],
    key: PartitionKey
) -> List[NormalizedRecord]:
    """Normalize every row of `rows` that belongs to partition `key`."""
    return [normalize_row(row) for row in rows if partition_of(row) == key]


def records_digest(records: Iterable[NormalizedRecord]) -> str:
    """SHA-256 over the canonical JSON of the records, in order."""
    payload = json.dumps(
        [r.to_dict() for r in records],
        sort_keys=True, ensure_ascii=False, separators=(',', ':'),
    )
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


# ── Reader ──────────────────────────────────────────────────────────

class SourceReader:
    """
    Reads one yearly extract into a Polars DataFrame of text columns.

    The header is read up front so every column can be pinned to string;
    type inference per block would otherwise fail as soon as a later block
    disagrees with the first one.
    """

    def __init__(self, delimiter: str = ';', encoding: str = 'utf8',
                 block_size: int = 64 * 1024 * 1024):
        self.delimiter = delimiter
        self.encoding = encoding
        self.block_size = block_size
        self.malformed_rows = 0

    def _read_header(self, path: Path) -> List[str]:
        encoding = 'utf-8-sig' if self.encoding.replace('-', '').lower() == 'utf8' else self.encoding
        with open(path, encoding=encoding, newline='') as f:
            header = f.readline()
        names = [name.strip().strip('"').strip() for name in header.rstrip('\r\n').split(self.delimiter)]
        if not any(names):
            raise ValueError(f"No header row in {path}")
        return names

    def _on_invalid_row(self, row) -> str:
        self.malformed_rows += 1
        problem = MalformedRow(
            row.number,
            f"expected {row.expected_columns} columns, got {row.actual_columns}",
        )
        if self.malformed_rows <= 10:
            logger.warning(f"Skipping malformed row ({problem})")
        return 'skip'

    def read(self, path: Path) -> pl.DataFrame:
        """
        Stream a CSV extract into memory.

        Args:
            path: Path to a ';'-separated extract

        Returns:
            DataFrame with one Utf8 column per header name
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Source file not found: {path}")

        names = self._read_header(path)
        self.malformed_rows = 0

        reader = pc.open_csv(
            path,
            read_options=pc.ReadOptions(
                column_names=names,
                skip_rows=1,
                block_size=self.block_size,
                encoding=self.encoding,
            ),
            parse_options=pc.ParseOptions(
                delimiter=self.delimiter,
                invalid_row_handler=self._on_invalid_row,
            ),
            convert_options=pc.ConvertOptions(
                column_types={name: pa.string() for name in names},
                strings_can_be_null=True,
                quoted_strings_can_be_null=True,
            ),
        )

        frames = [pl.from_arrow(batch) for batch in reader]
        if frames:
            df = pl.concat(frames, how='vertical')
        else:
            df = pl.DataFrame(schema={name: pl.Utf8 for name in names})

        logger.info(f"✅ Read {path.name}: {df.height:,} rows, {df.width} columns"
                    + (f" ({self.malformed_rows:,} malformed rows skipped)" if self.malformed_rows else ""))
        return df

    def iter_rows(self, path: Path) -> Iterator[Dict[str, Optional[str]]]:
        """Rows of an extract as column -> cell mappings."""
        yield from self.read(path).iter_rows(named=True)
