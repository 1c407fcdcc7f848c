"""
Bottleneck Scoring

score = avg_wait_hours * total_quantity + batch_count * batch_weight

Only entries carrying work take part. They are sorted by score (descending,
ties broken by kind then key for a stable order); the first two whose score
exceeds the significance threshold get rank 1 and 2. Everything else stays
unranked (rank 0). This is a top-2 selection, not a full ranking.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from core.calculations.stages import StageMetric
from core.settings import EngineSettings

logger = logging.getLogger(__name__)

MAX_BOTTLENECK_RANK = 2

KIND_STAGE = "stage"
KIND_MACHINE = "machine"


@dataclass(frozen=True)
class BottleneckCandidate:
    kind: str
    key: str
    label: str
    avg_wait_hours: float
    total_quantity: float
    batch_count: int

    @property
    def has_work(self) -> bool:
        return self.batch_count > 0


@dataclass(frozen=True)
class BottleneckEntry:
    kind: str
    key: str
    label: str
    score: float
    rank: int

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind,
            'key': self.key,
            'label': self.label,
            'score': round(self.score, 4),
            'rank': self.rank,
        }


def bottleneck_score(candidate: BottleneckCandidate, batch_weight: float = 10.0) -> float:
    return candidate.avg_wait_hours * candidate.total_quantity + candidate.batch_count * batch_weight


def stage_candidate(metric: StageMetric) -> BottleneckCandidate:
    return BottleneckCandidate(
        kind=KIND_STAGE,
        key=metric.stage,
        label=metric.stage.replace('_', ' ').title(),
        avg_wait_hours=metric.avg_wait_hours,
        total_quantity=metric.total_quantity,
        batch_count=metric.batch_count,
    )


def rank_bottlenecks(
    candidates: Iterable[BottleneckCandidate],
    settings: Optional[EngineSettings] = None
) -> List[BottleneckEntry]:
    """
    Score and rank candidates.

    Args:
        candidates: Stages and/or machines
        settings: Threshold and batch weight

    Returns:
        Scored entries for every candidate with work, sorted by score
        descending; rank is 1 or 2 for the top significant entries, 0 otherwise.
        Candidates without work are not scored at all.
    """
    settings = settings or EngineSettings()

    scored = [
        (bottleneck_score(c, settings.bottleneck_batch_weight), c)
        for c in candidates
        if c.has_work
    ]
    scored.sort(key=lambda item: (-item[0], item[1].kind, item[1].key))

    entries = []
    for position, (score, candidate) in enumerate(scored):
        rank = 0
        if position < MAX_BOTTLENECK_RANK and score > settings.bottleneck_threshold:
            rank = position + 1
        entries.append(BottleneckEntry(
            kind=candidate.kind,
            key=candidate.key,
            label=candidate.label,
            score=score,
            rank=rank,
        ))
    return entries


def top_bottlenecks(entries: Iterable[BottleneckEntry]) -> List[BottleneckEntry]:
    """Only the ranked entries (at most two), rank 1 first"""
    return sorted((e for e in entries if e.rank > 0), key=lambda e: e.rank)


def rank_lookup(entries: Iterable[BottleneckEntry]) -> Dict[str, BottleneckEntry]:
    return {entry.key: entry for entry in entries}
