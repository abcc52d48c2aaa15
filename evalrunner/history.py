"""
Statistics over a learner's past attempts.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .models import Attempt

DEFAULT_PASS_THRESHOLD = 70.0


def _empty_distribution() -> Dict[str, int]:
    return {'excellent': 0, 'good': 0, 'average': 0, 'poor': 0}


@dataclass(frozen=True)
class HistoryStats:
    count: int = 0
    passed: int = 0
    mean_percentage: float = 0.0
    max_percentage: float = 0.0
    pass_rate: float = 0.0
    average_elapsed_seconds: float = 0.0
    distribution: Dict[str, int] = field(default_factory=_empty_distribution)
    total_attempts: int = 0
    completion_rate: float = 0.0


def score_band(percentage: float) -> str:
    """Band used for the score distribution."""
    if percentage >= 90:
        return 'excellent'
    if percentage >= 70:
        return 'good'
    if percentage >= 50:
        return 'average'
    return 'poor'


def summarize_attempts(
    attempts: Iterable[Attempt],
    pass_threshold: float = DEFAULT_PASS_THRESHOLD
) -> HistoryStats:
    """
    Compute count, passes, mean and max percentage over finished attempts.

    total_attempts and completion_rate also count unfinished rows. An
    empty history yields zeros everywhere.
    """
    rows: List[Attempt] = list(attempts)
    finished = [a for a in rows if a.finished]
    if not finished:
        return HistoryStats(total_attempts=len(rows))

    percentages = [a.percentage for a in finished]
    passed = sum(1 for p in percentages if p >= pass_threshold)
    distribution = _empty_distribution()
    for p in percentages:
        distribution[score_band(p)] += 1

    count = len(finished)
    return HistoryStats(
        count=count,
        passed=passed,
        mean_percentage=sum(percentages) / count,
        max_percentage=max(percentages),
        pass_rate=100.0 * passed / count,
        average_elapsed_seconds=sum(a.elapsed_seconds for a in finished) / count,
        distribution=distribution,
        total_attempts=len(rows),
        completion_rate=100.0 * count / len(rows)
    )
