"""
Error types raised by the rollup engine.

Only StateDivergence is fatal. TransientSourceError skips a year for the
current run and MalformedRow is counted and logged by the reader.
"""

from typing import Optional


class RollupError(Exception):
    """Base class for every error raised by ssp_rollup."""


class TransientSourceError(RollupError):
    """Source spreadsheet could not be fetched after all retries."""

    def __init__(self, year: int, message: str, attempts: int = 0):
        self.year = year
        self.attempts = attempts
        super().__init__(f"source for {year} unavailable after {attempts} attempt(s): {message}")


class MalformedRow(RollupError):
    """A raw CSV line that could not be split into the header's columns."""

    def __init__(self, line_number: Optional[int], reason: str):
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"line {line_number}: {reason}")


class StateDivergence(RollupError):
    """
    Persisted state can no longer be trusted.

    Raised when a partition has a fingerprint but no readable stored
    summary, when a retraction would drive a counter negative, or when the
    aggregate document and the processing state disagree about which
    partitions were merged. Continuing would double or under count.
    """
