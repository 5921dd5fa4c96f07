"""
Top-N rankings derived from counters.

Ties keep the counter's insertion order (first-observed label first):
sorted() is stable and the key only looks at the count.
"""

from typing import Dict, List, Tuple


def top_n(counter: Dict[str, int], n: int) -> List[Tuple[str, int]]:
    """Highest-count (label, count) pairs, at most `n` of them."""
    if n <= 0:
        return []
    ranked = sorted(
        ((label, count) for label, count in counter.items() if count > 0),
        key=lambda item: -item[1],
    )
    return ranked[:n]


def top_neighborhoods(counter: Dict[str, int], n: int = 100) -> List[dict]:
    return [{'bairro': label, 'count': count} for label, count in top_n(counter, n)]


def top_municipalities(counter: Dict[str, int], n: int = 50) -> List[dict]:
    return [{'municipio': label, 'count': count} for label, count in top_n(counter, n)]


def top_police_stations(counter: Dict[str, int], n: int = 50) -> List[dict]:
    return [{'delegacia': label, 'count': count} for label, count in top_n(counter, n)]
