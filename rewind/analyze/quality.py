"""Deterministic quality score for generated summaries."""

from rewind.models import Summary


def _length_points(text: str, low: int, high: int, full: int, partial: int) -> int:
    if low <= len(text) <= high:
        return full
    return partial if text else 0


def quality_score(summary: Summary) -> int:
    """
    Score a summary from its field lengths and list sizes, in [0, 100].

    headline 20-100 chars: 15 (else 8 if present), tldr 50-500 chars: 15
    (else 8 if present), full summary >= 200 chars: 20 (>= 100: 12), plus
    10 per takeaway up to 30, 5 per related idea up to 10 and 5 per trivia
    item up to 10.
    """
    score = 0
    score += _length_points(summary.headline, 20, 100, 15, 8)
    score += _length_points(summary.tldr, 50, 500, 15, 8)

    if len(summary.full_summary) >= 200:
        score += 20
    elif len(summary.full_summary) >= 100:
        score += 12

    score += min(10 * len(summary.key_takeaways), 30)
    score += min(5 * len(summary.related_ideas), 10)
    score += min(5 * len(summary.allied_trivia), 10)

    return max(0, min(score, 100))
