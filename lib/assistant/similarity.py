"""
String similarity scoring for typo-tolerant matching.

similarity(a, b) blends three signals and keeps the strongest:

  - trigram overlap (Jaccard over 3-char shingles, pg_trgm style padding)
  - normalized Levenshtein similarity
  - word overlap (query words of length > 1 found in the target)

Containment short-circuits to a score in [0.85, 1.0] scaled by the
length ratio, so "budget" vs "Q1 budget review" ranks above any
non-containing candidate.
"""


def similarity(a: str, b: str) -> float:
    """Combined similarity in [0, 1]. Case-insensitive."""
    if not a or not b:
        return 0.0

    al = a.lower()
    bl = b.lower()
    if al == bl:
        return 1.0

    if al in bl or bl in al:
        return 0.85 + 0.15 * min(len(al), len(bl)) / max(len(al), len(bl))

    trigram_score = trigram_similarity(al, bl)
    leven_score = 1 - levenshtein_distance(al, bl) / max(len(al), len(bl))
    overlap = word_overlap_score(al, bl)

    return max(
        trigram_score * 0.4 + leven_score * 0.4 + overlap * 0.2,
        trigram_score,
        leven_score * 0.9,
    )


def _trigrams(value: str) -> set[str]:
    padded = f"  {value} "
    return {padded[i : i + 3] for i in range(len(padded) - 2)}


def trigram_similarity(a: str, b: str) -> float:
    trigrams_a = _trigrams(a)
    trigrams_b = _trigrams(b)

    if not trigrams_a and not trigrams_b:
        return 1.0
    if not trigrams_a or not trigrams_b:
        return 0.0

    intersection = len(trigrams_a & trigrams_b)
    return intersection / (len(trigrams_a) + len(trigrams_b) - intersection)


def levenshtein_distance(a: str, b: str) -> int:
    """
    Edit distance between a and b.

    Approximate for very different lengths: when the lengths differ by
    more than half the longer one, returns the longer length without
    computing the table.
    """
    m, n = len(a), len(b)
    if abs(m - n) > max(m, n) * 0.5:
        return max(m, n)

    previous = list(range(n + 1))
    for i in range(1, m + 1):
        current = [i] + [0] * n
        for j in range(1, n + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            )
        previous = current
    return previous[n]


def word_overlap_score(query: str, target: str) -> float:
    """Fraction of query words (len > 1) that appear inside target."""
    words = [w for w in query.split() if len(w) > 1]
    if not words:
        return 0.0
    target_lower = target.lower()
    return sum(1 for w in words if w in target_lower) / len(words)
