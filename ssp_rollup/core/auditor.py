#!/usr/bin/env python3
"""
Partition Auditor - independent recount of stored summaries

Recounts a raw yearly extract with DuckDB SQL, which shares none of the
Polars aggregation code, and compares the per-partition record totals and
per-rubrica totals with the summaries kept in the fingerprint store.

Key features:
- Raw frame registered as an Arrow table (zero-copy)
- Same partition assignment as the extractor: DD/MM/YYYY date first,
  ANO/MES columns as fallback
- Same label rules: trimmed, upper-cased, "null"/empty -> UNKNOWN
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import duckdb
import polars as pl

from .aggregator import UNKNOWN
from .extractor import COLUMN_ALIASES, MAX_INT_CELL
from .partition import PartitionKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditFinding:
    """One mismatch between the recount and a stored summary."""
    partition: str
    field: str
    expected: Optional[int]
    stored: Optional[int]

    def __str__(self):
        return f"{self.partition} {self.field}: recount={self.expected} stored={self.stored}"


def _resolve(columns: List[str], field: str) -> str:
    """SQL expression for a canonical field, NULL when the extract lacks it."""
    for candidate in COLUMN_ALIASES.get(field, (field,)):
        if candidate in columns:
            quoted = '"' + candidate.replace('"', '""') + '"'
            cleaned = f"trim(regexp_replace({quoted}, '[\\r\\n]', ' ', 'g'))"
            return f"CASE WHEN lower({cleaned}) IN ('', 'null') THEN NULL ELSE {cleaned} END"
    return "CAST(NULL AS VARCHAR)"


def _int_expr(expr: str) -> str:
    number = f"TRY_CAST(replace({expr}, ',', '.') AS DOUBLE)"
    return (f"CASE WHEN {number} BETWEEN 0 AND {MAX_INT_CELL} "
            f"THEN CAST(trunc({number}) AS BIGINT) END")


class PartitionAuditor:
    """
    Audits stored partition summaries against a raw extract.

    Args:
        store: FingerprintStore holding the summaries to check
    """

    def __init__(self, store):
        self.store = store

    def _query(self, columns: List[str]) -> str:
        date_raw = _resolve(columns, 'DATA_OCORRENCIA_BO')
        rubrica = _resolve(columns, 'RUBRICA')
        ano = _int_expr(_resolve(columns, 'ANO'))
        mes = _int_expr(_resolve(columns, 'MES'))

        return f"""
            WITH cleaned AS (
                SELECT
                    CASE WHEN regexp_full_match({date_raw}, '\\d{{2}}/\\d{{2}}/\\d{{4}}')
                         THEN try_strptime({date_raw}, '%d/%m/%Y') END AS incident_ts,
                    {ano} AS ano,
                    {mes} AS mes,
                    coalesce(upper({rubrica}), '{UNKNOWN}') AS rubrica
                FROM raw
            ),
            assigned AS (
                SELECT
                    CASE WHEN incident_ts IS NOT NULL THEN year(incident_ts)
                         WHEN mes BETWEEN 1 AND 12 THEN ano END AS part_year,
                    CASE WHEN incident_ts IS NOT NULL THEN month(incident_ts)
                         WHEN ano IS NOT NULL AND mes BETWEEN 1 AND 12 THEN mes END AS part_month,
                    rubrica
                FROM cleaned
            )
            SELECT part_year, part_month, rubrica, COUNT(*) AS n
            FROM assigned
            WHERE part_year IS NOT NULL AND part_month IS NOT NULL
            GROUP BY part_year, part_month, rubrica
            ORDER BY part_year, part_month, rubrica
        """

    def recount(self, frame: pl.DataFrame) -> Dict[PartitionKey, Tuple[int, Dict[str, int]]]:
        """
        Count records and records per rubrica, per partition.

        Returns:
            partition -> (record count, rubrica -> count)
        """
        con = duckdb.connect()
        try:
            con.register('raw', frame.to_arrow())
            rows = con.execute(self._query(frame.columns)).fetchall()
        finally:
            con.close()

        counts: Dict[PartitionKey, Tuple[int, Dict[str, int]]] = {}
        for year, month, rubrica, n in rows:
            key = PartitionKey(int(year), int(month))
            total, by_rubrica = counts.get(key, (0, {}))
            by_rubrica[rubrica] = int(n)
            counts[key] = (total + int(n), by_rubrica)
        return counts

    def audit(self, frame: pl.DataFrame) -> List[AuditFinding]:
        """
        Compare the recount of `frame` with the stored summaries.

        Partitions found in the extract but never processed are reported
        with field "fingerprint" and stored=None.
        """
        findings: List[AuditFinding] = []
        recount = self.recount(frame)

        for key in sorted(recount, reverse=True):
            total, by_rubrica = recount[key]
            fingerprint = self.store.get(key)
            if fingerprint is None or fingerprint.stored_summary is None:
                findings.append(AuditFinding(key.label, 'fingerprint', total, None))
                continue

            summary = fingerprint.stored_summary
            if summary.total_records != total:
                findings.append(AuditFinding(key.label, 'totalRegistros', total, summary.total_records))

            stored_rubricas = summary.counters['porRubrica']
            for label in sorted(set(by_rubrica) | set(stored_rubricas)):
                expected = by_rubrica.get(label, 0)
                stored = stored_rubricas.get(label, 0)
                if expected != stored:
                    findings.append(AuditFinding(key.label, f"porRubrica[{label}]", expected, stored))

        if findings:
            logger.warning(f"⚠️  Audit found {len(findings)} mismatches across {len(recount)} partitions")
        else:
            logger.info(f"✅ Audit clean: {len(recount)} partitions match the stored summaries")
        return findings
