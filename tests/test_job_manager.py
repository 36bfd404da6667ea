import asyncio

import pytest

from aitools.client.subscription import collect
from aitools.errors import ActiveJobExists, InsufficientCredits, ExternalTaskFailed, ValidationError
from aitools.gateway.webhook import handle_webhook
from aitools.jobs.models import InvalidTransition, JobStatus

from conftest import USER_ID, failure_event, success_event


def refunds(ledger):
    return [e for e in ledger.transactions(USER_ID) if e.is_refund]


@pytest.fixture
def pose_assets(png_bytes):
    return {"person": png_bytes, "reference": png_bytes}


async def test_start_job_runs_the_saga(manager, jobs, ledger, storage, pose_assets):
    handle = await manager.start_job("pose_changer", pose_assets)

    job = jobs.get("pose_changer", handle.job_id)
    assert job.status == JobStatus.RUNNING
    assert job.task_id == handle.task_id
    assert job.credit_cost == 60
    assert job.run_count == 1
    assert ledger.balance(USER_ID) == 440
    assert len(storage.objects) == 2
    assert all(url.startswith("https://proj.supabase.co/") for url in job.input_refs.values())


async def test_end_to_end_success(manager, jobs, ledger, pose_assets):
    handle = await manager.start_job("pose_changer", pose_assets)
    subscription = await manager.subscribe(handle.tool, handle.job_id)

    handle_webhook(jobs, ledger, success_event(handle.task_id, "https://rh/final.png"))
    updates = await asyncio.wait_for(collect(subscription), 1)

    assert updates[0].status == JobStatus.RUNNING
    assert updates[-1].status == JobStatus.COMPLETED
    assert updates[-1].output_url == "https://rh/final.png"
    assert updates[-1].user_message is None
    assert subscription.closed
    assert ledger.balance(USER_ID) == 440


async def test_end_to_end_failure_is_translated_and_refunded(manager, jobs, ledger, pose_assets):
    handle = await manager.start_job("pose_changer", pose_assets)
    handle_webhook(jobs, ledger, failure_event(handle.task_id, "workflow execution timeout"))

    final = await manager.wait(handle, timeout=1)
    assert final.status == JobStatus.FAILED
    assert final.job.error_message == "workflow execution timeout"
    assert final.user_message.category == "timeout"
    assert final.user_message.message == "Processamento demorou muito"
    assert ledger.balance(USER_ID) == 500
    assert len(refunds(ledger)) == 1


async def test_second_start_while_active_is_rejected(manager, jobs, pose_assets):
    first = await manager.start_job("pose_changer", pose_assets)
    with pytest.raises(ActiveJobExists) as exc_info:
        await manager.start_job("veste_ai", {"person": pose_assets["person"], "clothing": pose_assets["person"]})
    assert exc_info.value.job_id == first.job_id
    assert len(jobs.all()) == 1


async def test_concurrent_starts_create_one_job(manager, jobs, pose_assets):
    results = await asyncio.gather(
        manager.start_job("pose_changer", pose_assets),
        manager.start_job("pose_changer", pose_assets),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1 and isinstance(errors[0], ActiveJobExists)
    assert len(jobs.all()) == 1


async def test_insufficient_credits_creates_no_job(manager, jobs, ledger, storage, pose_assets):
    ledger.consume(USER_ID, 480, "spent elsewhere")
    with pytest.raises(InsufficientCredits) as exc_info:
        await manager.start_job("pose_changer", pose_assets)
    assert exc_info.value.message == "Saldo insuficiente"
    assert exc_info.value.balance == 20
    assert jobs.all() == []
    # Uploaded assets stay in storage.
    assert len(storage.objects) == 2


async def test_gateway_failure_refunds_once(manager, jobs, ledger, fake_hub, pose_assets):
    fake_hub.run_error = "Network error"
    with pytest.raises(ExternalTaskFailed):
        await manager.start_job("pose_changer", pose_assets)

    (job,) = jobs.all()
    assert job.status == JobStatus.FAILED
    assert job.error_message == "Network error"
    assert ledger.balance(USER_ID) == 500
    assert len(refunds(ledger)) == 1

    # The family is free again.
    fake_hub.run_error = None
    await manager.start_job("pose_changer", pose_assets)


async def test_invalid_credit_cost_is_rejected_before_anything_happens(manager, jobs, ledger, pose_assets):
    with pytest.raises(ValidationError):
        await manager.start_job("pose_changer", pose_assets, credit_cost=0)
    assert jobs.all() == []
    assert ledger.transactions(USER_ID) == []


async def test_cancel_twice_refunds_once(manager, jobs, ledger, pose_assets):
    handle = await manager.start_job("pose_changer", pose_assets)
    first = await manager.cancel_job(handle.tool, handle.job_id)
    second = await manager.cancel_job(handle.tool, handle.job_id)

    assert first.refunded_amount == 60
    assert second.already_terminal and second.refunded_amount == 0
    assert ledger.balance(USER_ID) == 500
    assert len(refunds(ledger)) == 1


async def test_cancel_after_completion_is_a_no_op(manager, jobs, ledger, pose_assets):
    handle = await manager.start_job("pose_changer", pose_assets)
    handle_webhook(jobs, ledger, success_event(handle.task_id))
    result = await manager.cancel_job(handle.tool, handle.job_id)
    assert result.already_terminal
    assert jobs.get(handle.tool, handle.job_id).status == JobStatus.COMPLETED
    assert ledger.balance(USER_ID) == 440


async def test_refine_appends_output_history(manager, jobs, ledger, fake_hub, png_bytes):
    angles = {name: png_bytes for name in ("front", "profile", "semi_profile", "low_angle")}
    handle = await manager.start_job("character_generator", angles)
    handle_webhook(jobs, ledger, success_event(handle.task_id, "https://rh/v1.png"))

    refined = await manager.refine_job(handle, "1,3", credit_cost=30)
    job = jobs.get("character_generator", handle.job_id)
    assert job.status == JobStatus.RUNNING
    assert job.run_count == 2
    assert job.credit_cost == 30
    assert refined.task_id != handle.task_id

    nodes = {n["nodeId"]: n["fieldValue"] for n in fake_hub.run_payloads[-1]["nodeInfoList"]}
    assert nodes["47"] == "1,3"
    assert "45" in nodes

    handle_webhook(jobs, ledger, success_event(refined.task_id, "https://rh/v2.png"))
    job = jobs.get("character_generator", handle.job_id)
    assert job.output_urls == ["https://rh/v1.png", "https://rh/v2.png"]
    assert job.output_url == "https://rh/v2.png"
    assert ledger.balance(USER_ID) == 500 - 60 - 30


async def test_second_refine_uses_the_latest_output(manager, jobs, ledger, fake_hub, png_bytes):
    angles = {name: png_bytes for name in ("front", "profile", "semi_profile", "low_angle")}
    handle = await manager.start_job("character_generator", angles)
    handle_webhook(jobs, ledger, success_event(handle.task_id, "https://rh/v1.png"))
    first = await manager.refine_job(handle, "1", credit_cost=30)
    handle_webhook(jobs, ledger, success_event(first.task_id, "https://rh/v2.png"))

    seen = len(fake_hub.requests)
    await manager.refine_job(handle, "2", credit_cost=30)
    fetched = [str(r.url) for r in fake_hub.requests[seen:] if r.method == "GET"]
    assert "https://rh/v2.png" in fetched
    assert "https://rh/v1.png" not in fetched
    assert jobs.get("character_generator", handle.job_id).input_refs["result"] == "https://rh/v2.png"


async def test_refine_refunds_when_the_job_cannot_reopen(manager, jobs, ledger, monkeypatch, png_bytes):
    angles = {name: png_bytes for name in ("front", "profile", "semi_profile", "low_angle")}
    handle = await manager.start_job("character_generator", angles)
    handle_webhook(jobs, ledger, success_event(handle.task_id, "https://rh/v1.png"))

    monkeypatch.setattr(jobs, "transition", lambda *args, **kwargs: None)
    with pytest.raises(InvalidTransition):
        await manager.refine_job(handle, "1", credit_cost=30)
    assert ledger.balance(USER_ID) == 440
    assert jobs.get("character_generator", handle.job_id).status == JobStatus.COMPLETED


async def test_refine_requires_completed_job(manager, png_bytes):
    angles = {name: png_bytes for name in ("front", "profile", "semi_profile", "low_angle")}
    handle = await manager.start_job("character_generator", angles)
    with pytest.raises(ValidationError):
        await manager.refine_job(handle, "1")
