"""
Near-duplicate detection for consecutive transcript chunks.

Adjacent recognition windows can overlap, which makes the recognizer emit
the same sentence twice. The sink compares each outgoing chunk against the
previous one and drops it when the two are nearly identical.
"""

DEFAULT_SIMILARITY_THRESHOLD = 0.8


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (insertions, deletions, substitutions)."""
    if a == b:
        return 0
    # iterate over the longer string, keep a row sized to the shorter one
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def similarity_ratio(a: str, b: str) -> float:
    """
    Case-insensitive similarity in [0, 1].

    ``(max_len - distance) / max_len``; two empty strings are fully similar.
    """
    a = a.lower()
    b = b.lower()
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return (max_len - levenshtein_distance(a, b)) / max_len


def similar(a: str, b: str, threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> bool:
    """True when ``a`` and ``b`` are at least ``threshold`` similar."""
    return similarity_ratio(a, b) >= threshold


class SimilarityDetector:
    """Holds the configured threshold so the sink can be handed a single comparator."""

    def __init__(self, threshold: float = DEFAULT_SIMILARITY_THRESHOLD):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be between 0 and 1")
        self.threshold = threshold

    def similar(self, a: str, b: str) -> bool:
        return similar(a, b, self.threshold)
