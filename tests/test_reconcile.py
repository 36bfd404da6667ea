from datetime import timedelta

from aitools.jobs.models import JobRecord, JobStatus, utcnow
from aitools.jobs.reconcile import (
    NEVER_SUBMITTED_MESSAGE,
    NO_TASK_ID_MESSAGE,
    UNVERIFIED_MESSAGE,
    reconcile_job,
    reconcile_stale_jobs,
)
from aitools.tools.registry import registry

from conftest import USER_ID


def stale_job(jobs, ledger, status, task_id=None, minutes=30, tool="pose_changer"):
    job = JobRecord(user_id=USER_ID, tool=tool, status=status, task_id=task_id, credit_cost=60)
    ledger.consume(USER_ID, 60, tool, job_id=job.id)
    jobs.create(job)
    jobs.update(tool, job.id, {"updated_at": utcnow() - timedelta(minutes=minutes)})
    return job


async def test_sweep_settles_each_kind_of_stale_job(jobs, ledger, provider, fake_hub):
    done = stale_job(jobs, ledger, JobStatus.RUNNING, "t-done")
    broken = stale_job(jobs, ledger, JobStatus.RUNNING, "t-broken")
    lost = stale_job(jobs, ledger, JobStatus.RUNNING, "t-lost", tool="veste_ai")
    no_task = stale_job(jobs, ledger, JobStatus.RUNNING, None, tool="flyer_maker")
    orphan = stale_job(jobs, ledger, JobStatus.PENDING, tool="character_generator")
    still_running = stale_job(jobs, ledger, JobStatus.RUNNING, "t-busy", tool="character_generator")
    fresh = stale_job(jobs, ledger, JobStatus.RUNNING, "t-fresh", minutes=1)

    fake_hub.statuses.update({
        "t-done": {"taskStatus": "SUCCESS", "results": [{"url": "https://rh/o.png", "outputType": "png"}]},
        "t-broken": {"taskStatus": "FAILED", "errorMessage": "out of memory"},
        "t-lost": {"taskStatus": "???"},
    })

    settled = await reconcile_stale_jobs(jobs, ledger, provider, registry)
    assert settled == 5

    def status(job):
        return jobs.get(job.tool, job.id)

    assert status(done).status == JobStatus.COMPLETED
    assert status(broken).error_message == "out of memory"
    assert status(lost).error_message == UNVERIFIED_MESSAGE
    assert status(no_task).error_message == NO_TASK_ID_MESSAGE
    assert status(orphan).error_message == NEVER_SUBMITTED_MESSAGE
    assert status(still_running).status == JobStatus.RUNNING
    assert status(fresh).status == JobStatus.RUNNING

    refunded = [e for e in ledger.transactions(USER_ID) if e.is_refund]
    assert len(refunded) == 4

    # A second sweep finds nothing left to do.
    assert await reconcile_stale_jobs(jobs, ledger, provider, registry) == 0
    assert len([e for e in ledger.transactions(USER_ID) if e.is_refund]) == 4


async def test_sweep_continues_past_a_failing_query(jobs, ledger, provider, fake_hub):
    unreachable = stale_job(jobs, ledger, JobStatus.RUNNING, "t-down")
    orphan = stale_job(jobs, ledger, JobStatus.PENDING, tool="veste_ai")
    fake_hub.broken_queries.add("t-down")

    assert await reconcile_stale_jobs(jobs, ledger, provider, registry) == 2
    assert jobs.get(unreachable.tool, unreachable.id).error_message == UNVERIFIED_MESSAGE
    assert jobs.get(orphan.tool, orphan.id).error_message == NEVER_SUBMITTED_MESSAGE
    assert ledger.balance(USER_ID) == 500


async def test_reconcile_is_a_no_op_for_terminal_jobs(jobs, ledger, provider, fake_hub):
    job = jobs.create(JobRecord(user_id=USER_ID, tool="pose_changer", status=JobStatus.CANCELLED, task_id="t"))
    result = await reconcile_job(jobs, ledger, provider, job)
    assert result.provider_status == "skipped"
    assert not result.updated
    assert fake_hub.requests == []


async def test_reconcile_mirrors_provider_queue_state(jobs, ledger, provider, fake_hub):
    job = jobs.create(JobRecord(user_id=USER_ID, tool="pose_changer", status=JobStatus.RUNNING, task_id="t-q"))
    fake_hub.statuses["t-q"] = {"taskStatus": "QUEUED"}

    result = await reconcile_job(jobs, ledger, provider, job)
    assert result.updated
    assert result.job_status == JobStatus.QUEUED

    again = await reconcile_job(jobs, ledger, provider, jobs.get(job.tool, job.id))
    assert not again.updated
    assert ledger.transactions(USER_ID) == []
