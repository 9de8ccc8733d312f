"""Unit string helpers

Formatting and comparison of phonetic unit sequences. Sequences are compared
at token granularity ("U12" is one token), so the distance between two unit
strings counts inserted, deleted and substituted units.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from relaytive.models.results import StringDistance


UNIT_PREFIX = "U"


def collapse_repeats(unit_ids: Sequence[int]) -> List[int]:
    """Drop consecutive duplicates (CTC-style run collapsing)"""
    collapsed: List[int] = []
    for uid in unit_ids:
        if not collapsed or collapsed[-1] != uid:
            collapsed.append(int(uid))
    return collapsed


def format_unit_string(unit_ids: Sequence[int]) -> str:
    return " ".join(f"{UNIT_PREFIX}{uid}" for uid in unit_ids)


def tokenize(unit_string: Optional[str]) -> List[str]:
    if not unit_string:
        return []
    return unit_string.split()


def render_symbols(unit_ids: Sequence[int], symbol_map: Optional[Dict[int, str]]) -> Optional[str]:
    """Readable spelling from a unit-to-symbol table; unmapped units render as '?'"""
    if not symbol_map or not unit_ids:
        return None
    return "".join(symbol_map.get(uid, "?") for uid in unit_ids)


def _distance_matrix(a: Sequence[str], b: Sequence[str]) -> np.ndarray:
    """Levenshtein DP table over tokens"""
    m, n = len(a), len(b)
    dp = np.zeros((m + 1, n + 1), dtype=np.int64)
    dp[:, 0] = np.arange(m + 1)
    dp[0, :] = np.arange(n + 1)
    for i in range(1, m + 1):
        for j in range(1, n + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            dp[i, j] = min(
                dp[i - 1, j] + 1,
                dp[i, j - 1] + 1,
                dp[i - 1, j - 1] + cost,
            )
    return dp


def token_edit_distance(a: Sequence[str], b: Sequence[str]) -> int:
    if not a:
        return len(b)
    if not b:
        return len(a)
    return int(_distance_matrix(a, b)[len(a), len(b)])


def phonetic_similarity(query: Optional[str], exemplar: Optional[str]) -> float:
    """1 - token edit distance normalized by the longer sequence; 1.0 for two empty strings"""
    a = tokenize(query)
    b = tokenize(exemplar)
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - token_edit_distance(a, b) / float(longest)


def string_distance(a: str, b: str) -> StringDistance:
    """Align two unit strings and count the edit operations.

    Backtracking prefers the diagonal (match or substitution) when it is no
    worse than either neighbour, then a deletion, then an insertion.

    Args:
        a: Reference unit string, e.g. "U12 U7 U3"
        b: Compared unit string

    Returns:
        StringDistance with the total distance and the operation counts
    """
    ta, tb = tokenize(a), tokenize(b)
    dp = _distance_matrix(ta, tb)

    insertions = deletions = substitutions = 0
    i, j = len(ta), len(tb)
    while i > 0 or j > 0:
        if i > 0 and j > 0:
            diag = dp[i - 1, j - 1]
            up = dp[i - 1, j]
            left = dp[i, j - 1]
            if diag <= up and diag <= left:
                if ta[i - 1] != tb[j - 1]:
                    substitutions += 1
                i -= 1
                j -= 1
            elif up < left:
                deletions += 1
                i -= 1
            else:
                insertions += 1
                j -= 1
        elif i > 0:
            deletions += 1
            i -= 1
        else:
            insertions += 1
            j -= 1

    return StringDistance(
        distance=int(dp[len(ta), len(tb)]),
        insertions=insertions,
        deletions=deletions,
        substitutions=substitutions,
    )
