"""
Worker matching heuristic for automatic shift assignment.

Each candidate gets a deterministic score out of 100:

- skills overlap: matched / required * 40 (no required skills counts as 1)
- experience distance: max(0, 30 - 10 * |worker level - job level|)
- availability: 20 when the worker is available
- rating: (rating or 4) * 2
"""

from __future__ import annotations

from typing import Optional, Sequence

from .collaborators import Job, Worker

BEST_MATCH = "best_match"

EXPERIENCE_LEVELS = {"entry": 1, "mid": 2, "senior": 3}
DEFAULT_RATING = 4.0


def _experience_rank(level: Optional[str]) -> int:
    return EXPERIENCE_LEVELS.get((level or "").strip().lower(), 1)


def score_worker(worker: Worker, job: Job) -> float:
    required = list(job.required_skills or [])
    worker_skills = set(worker.skills or [])
    matched = sum(1 for skill in required if skill in worker_skills)
    score = matched / (len(required) or 1) * 40.0

    distance = abs(_experience_rank(worker.experience_level) - _experience_rank(job.experience_level))
    score += max(0.0, 30.0 - distance * 10.0)

    score += 20.0 if worker.is_available else 0.0

    rating = worker.rating if worker.rating else DEFAULT_RATING
    score += rating * 2.0
    return score


def select_best(candidates: Sequence[Worker], job: Job, criteria: str = BEST_MATCH) -> Worker:
    """Pick the candidate to assign.

    ``best_match`` returns the highest score, ties going to the earliest
    candidate. Any other criteria returns the first available candidate, or
    the first candidate when none is flagged available.
    """
    if not candidates:
        raise ValueError("No candidate workers to select from")
    if criteria != BEST_MATCH:
        for worker in candidates:
            if worker.is_available:
                return worker
        return candidates[0]
    best = candidates[0]
    best_score = score_worker(best, job)
    for worker in candidates[1:]:
        score = score_worker(worker, job)
        if score > best_score:
            best, best_score = worker, score
    return best
