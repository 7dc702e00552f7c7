"""
Edit-distance string similarity shared by the consistency checks.

Inputs are short name / address strings, so the full O(n·m) matrix is
computed without early-exit heuristics.
"""
from __future__ import annotations


def normalize(value: str) -> str:
    """Lower-case and drop every whitespace character."""
    return "".join(value.lower().split())


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance with unit insert / delete / substitute cost."""
    rows, cols = len(a) + 1, len(b) + 1
    matrix = [[0] * cols for _ in range(rows)]

    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            if a[i - 1] == b[j - 1]:
                matrix[i][j] = matrix[i - 1][j - 1]
            else:
                matrix[i][j] = 1 + min(
                    matrix[i - 1][j - 1],  # substitute
                    matrix[i][j - 1],      # insert
                    matrix[i - 1][j],      # delete
                )

    return matrix[-1][-1]


def string_similarity(a: str, b: str) -> float:
    """
    1 − edit_distance / max(len) over normalised strings, in [0, 1].
    Two empty strings are identical.
    """
    a, b = normalize(a), normalize(b)
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - edit_distance(a, b) / longest


def mean_similarity_to_first(values: list[str]) -> float:
    """Average similarity of every value to the first one; 1.0 for fewer than two."""
    if len(values) < 2:
        return 1.0
    base = values[0]
    return sum(string_similarity(base, other) for other in values[1:]) / (len(values) - 1)
