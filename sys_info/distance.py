"""Edit distance used for typo-tolerant alias lookup."""


def distance(a: str, b: str) -> int:
    """
    Levenshtein distance between two strings.

    Counts the minimum number of single-character insertions, deletions
    and substitutions needed to turn ``a`` into ``b``.
    """
    rows = len(a) + 1
    cols = len(b) + 1
    table = [[0] * cols for _ in range(rows)]

    for i in range(rows):
        table[i][0] = i
    for j in range(cols):
        table[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            table[i][j] = min(
                table[i - 1][j] + 1,         # deletion
                table[i][j - 1] + 1,         # insertion
                table[i - 1][j - 1] + cost,  # substitution
            )

    return table[-1][-1]
