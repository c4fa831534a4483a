import pytest

from shiftwise.services.collaborators import Job, Worker
from shiftwise.services.worker_matching import score_worker, select_best


def _job() -> Job:
    return Job(id="J1", title="Warehouse", required_skills=["forklift", "packing"], experience_level="mid")


def test_best_match_prefers_skilled_available_worker():
    skilled = Worker(id="W1", skills=["forklift", "packing"], experience_level="mid", is_available=True, rating=5)
    idle = Worker(id="W2", skills=[], experience_level="mid", is_available=False, rating=5)

    assert score_worker(skilled, _job()) == pytest.approx(100.0)
    assert score_worker(idle, _job()) == pytest.approx(40.0)
    assert select_best([skilled, idle], _job()).id == "W1"
    assert select_best([idle, skilled], _job()).id == "W1"


def test_scoring_defaults_and_experience_distance():
    worker = Worker(id="W1", skills=["forklift"], experience_level="senior", is_available=True, rating=None)
    job = Job(id="J1", title="x", required_skills=["forklift", "packing"], experience_level="entry")
    # 20 skills + 10 experience + 20 available + 8 default rating
    assert score_worker(worker, job) == pytest.approx(58.0)

    unknown = Worker(id="W2", experience_level="wizard", is_available=False, rating=3)
    assert score_worker(unknown, Job(id="J2", title="y")) == pytest.approx(36.0)


def test_ties_keep_input_order_and_are_deterministic():
    a = Worker(id="A", skills=["forklift"], rating=4)
    b = Worker(id="B", skills=["forklift"], rating=4)
    job = _job()

    assert select_best([a, b], job).id == "A"
    assert select_best([a, b], job).id == select_best([a, b], job).id


def test_other_criteria_take_first_available():
    busy = Worker(id="W1", is_available=False, rating=5)
    free = Worker(id="W2", is_available=True, rating=1)

    assert select_best([busy, free], _job(), criteria="first_available").id == "W2"
    assert select_best([busy], _job(), criteria="first_available").id == "W1"


def test_empty_candidates_raise():
    with pytest.raises(ValueError):
        select_best([], _job())
