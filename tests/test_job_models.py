from datetime import timedelta

import pytest

from aitools.jobs.in_memory_store import InMemoryJobStore
from aitools.jobs.models import (
    InvalidTransition,
    JobRecord,
    JobStatus,
    can_transition,
    sources_for,
    utcnow,
)


def make_job(**kwargs) -> JobRecord:
    defaults = dict(user_id="user-1", tool="pose_changer", credit_cost=60)
    defaults.update(kwargs)
    return JobRecord(**defaults)


@pytest.mark.parametrize(
    "current, target",
    [
        (JobStatus.PENDING, JobStatus.RUNNING),
        (JobStatus.PENDING, JobStatus.CANCELLED),
        (JobStatus.QUEUED, JobStatus.RUNNING),
        (JobStatus.RUNNING, JobStatus.QUEUED),
        (JobStatus.RUNNING, JobStatus.COMPLETED),
        (JobStatus.RUNNING, JobStatus.FAILED),
        (JobStatus.COMPLETED, JobStatus.PENDING),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current, target",
    [
        (JobStatus.PENDING, JobStatus.COMPLETED),
        (JobStatus.COMPLETED, JobStatus.FAILED),
        (JobStatus.COMPLETED, JobStatus.RUNNING),
        (JobStatus.FAILED, JobStatus.PENDING),
        (JobStatus.CANCELLED, JobStatus.RUNNING),
        (JobStatus.FAILED, JobStatus.COMPLETED),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)


def test_sources_never_include_terminal_statuses():
    assert JobStatus.COMPLETED not in sources_for(JobStatus.PENDING)
    assert set(sources_for(JobStatus.FAILED)) == {JobStatus.PENDING, JobStatus.QUEUED, JobStatus.RUNNING}


def test_output_url_is_latest_version():
    job = make_job(output_urls=["a", "b"])
    assert job.output_url == "b"
    assert make_job().output_url is None


def test_row_round_trip_keeps_tool_out_of_the_row():
    job = make_job(status=JobStatus.RUNNING, task_id="t1", output_urls=["u"])
    row = job.to_row()
    assert "tool" not in row
    assert row["status"] == "running"
    restored = JobRecord.from_row("pose_changer", {**row, "output_urls": None})
    assert restored.tool == "pose_changer"
    assert restored.output_urls == []
    assert restored.task_id == "t1"


def test_transition_is_conditional_on_current_status():
    store = InMemoryJobStore()
    job = store.create(make_job())
    assert store.transition(job.tool, job.id, JobStatus.RUNNING, task_id="t1").status == JobStatus.RUNNING
    store.transition(job.tool, job.id, JobStatus.COMPLETED)
    # A late failure report cannot overwrite the completed job.
    assert store.transition(job.tool, job.id, JobStatus.FAILED) is None
    assert store.get(job.tool, job.id).status == JobStatus.COMPLETED


def test_completed_job_only_reopens_explicitly():
    store = InMemoryJobStore()
    job = store.create(make_job(status=JobStatus.COMPLETED))
    assert store.transition(job.tool, job.id, JobStatus.PENDING) is None
    reopened = store.transition(job.tool, job.id, JobStatus.PENDING, expect=[JobStatus.COMPLETED])
    assert reopened.status == JobStatus.PENDING


def test_require_transition_raises_on_terminal_job():
    store = InMemoryJobStore()
    job = store.create(make_job(status=JobStatus.CANCELLED))
    with pytest.raises(InvalidTransition):
        store.require_transition(job, JobStatus.RUNNING)


def test_claim_refund_wins_once():
    store = InMemoryJobStore()
    job = store.create(make_job(status=JobStatus.FAILED))
    assert store.claim_refund(job.tool, job.id) is not None
    assert store.claim_refund(job.tool, job.id) is None


def test_claim_refund_skips_free_jobs():
    store = InMemoryJobStore()
    job = store.create(make_job(credit_cost=0))
    assert store.claim_refund(job.tool, job.id) is None


def test_find_active_and_list_stale():
    store = InMemoryJobStore()
    old = store.create(make_job(status=JobStatus.RUNNING))
    store.update(old.tool, old.id, {"updated_at": utcnow() - timedelta(minutes=30)})
    store.create(make_job(tool="veste_ai", status=JobStatus.COMPLETED))

    assert store.find_active("user-1", ["pose_changer", "veste_ai"]).id == old.id
    assert store.find_active("user-2", ["pose_changer"]) is None
    stale = store.list_stale("pose_changer", [JobStatus.RUNNING], utcnow() - timedelta(minutes=15), 5)
    assert [j.id for j in stale] == [old.id]
