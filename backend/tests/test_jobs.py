import time
from datetime import timedelta

import pytest

from evalcouncil.config import settings
from evalcouncil.exceptions import (
    AlreadyClaimedError,
    DispatchError,
    InvalidTransitionError,
    JobNotFoundError,
    ValidationError,
)
from evalcouncil.models import JobStatus, utcnow
from evalcouncil.services import jobs
from evalcouncil.workers import _route_task, celery_app

DEMOGRAPHICS = {"ageRange": "25-34", "gender": "all", "incomeTier": "medium", "region": "europe"}

RESULT = {
    "overallScore": 4.2,
    "websiteSnapshot": {"productName": "Widget", "description": "A widget", "keyFeatures": ["cheap"]},
}


def test_normalize_url_adds_scheme():
    assert jobs.normalize_url("  example.com/product ") == "https://example.com/product"
    assert jobs.normalize_url("http://example.com") == "http://example.com"


@pytest.mark.parametrize("raw", ["", "   ", "https://", "http://example.com:notaport/"])
def test_normalize_url_rejects_garbage(raw):
    with pytest.raises(ValidationError):
        jobs.normalize_url(raw)


@pytest.mark.asyncio
async def test_create_job_starts_pending(db):
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS, None)

    assert job.status == JobStatus.PENDING
    assert job.url == "https://example.com"
    assert job.user_id is None
    assert (await jobs.get_status(db, job.id)).id == job.id


@pytest.mark.asyncio
async def test_create_job_requires_demographics(db):
    with pytest.raises(ValidationError):
        await jobs.create_job(db, "example.com", None)


@pytest.mark.asyncio
async def test_full_lifecycle_creates_evaluation(db):
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS, "user-1")

    job = await jobs.report_status(db, job.id, JobStatus.PROCESSING)
    assert job.status == JobStatus.PROCESSING

    job = await jobs.report_status(db, job.id, JobStatus.COMPLETED, result=RESULT)
    assert job.status == JobStatus.COMPLETED
    assert job.completed_at is not None
    assert job.evaluation_id is not None

    evaluation = await jobs.get_evaluation(db, job.evaluation_id)
    assert evaluation.job_id == job.id
    assert evaluation.user_id == "user-1"
    assert evaluation.website_snapshot["productName"] == "Widget"


@pytest.mark.asyncio
async def test_terminal_job_rejects_further_reports(db):
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)
    await jobs.report_status(db, job.id, JobStatus.PROCESSING)
    await jobs.report_status(db, job.id, JobStatus.COMPLETED, result=RESULT)

    with pytest.raises(InvalidTransitionError):
        await jobs.report_status(db, job.id, JobStatus.PROCESSING)
    with pytest.raises(InvalidTransitionError):
        await jobs.report_status(db, job.id, JobStatus.FAILED, error="late failure")

    assert (await jobs.get_status(db, job.id)).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_pending_cannot_jump_to_completed(db):
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)

    with pytest.raises(InvalidTransitionError):
        await jobs.report_status(db, job.id, JobStatus.COMPLETED, result=RESULT)
    assert (await jobs.get_status(db, job.id)).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_pending_can_fail_directly(db):
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)

    job = await jobs.report_status(db, job.id, JobStatus.FAILED, error="Could not scrape")
    assert job.status == JobStatus.FAILED
    assert job.error == "Could not scrape"


@pytest.mark.asyncio
async def test_repeated_processing_report_is_noop(db):
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)
    await jobs.report_status(db, job.id, JobStatus.PROCESSING)

    job = await jobs.report_status(db, job.id, JobStatus.PROCESSING)
    assert job.status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_completed_requires_result(db):
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)
    await jobs.report_status(db, job.id, JobStatus.PROCESSING)

    with pytest.raises(ValidationError):
        await jobs.report_status(db, job.id, JobStatus.COMPLETED)


@pytest.mark.asyncio
async def test_unknown_job(db):
    with pytest.raises(JobNotFoundError):
        await jobs.get_status(db, "missing")
    with pytest.raises(JobNotFoundError):
        await jobs.report_status(db, "missing", JobStatus.PROCESSING)
    with pytest.raises(JobNotFoundError):
        await jobs.claim(db, "missing", "user-1")


@pytest.mark.asyncio
async def test_claim_once_and_propagate_to_evaluation(db):
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)
    await jobs.report_status(db, job.id, JobStatus.PROCESSING)
    job = await jobs.report_status(db, job.id, JobStatus.COMPLETED, result=RESULT)

    claimed = await jobs.claim(db, job.id, "user-1")
    assert claimed.user_id == "user-1"

    evaluation = await jobs.get_evaluation(db, job.evaluation_id)
    assert evaluation.user_id == "user-1"
    assert [e.id for e in await jobs.list_user_evaluations(db, "user-1")] == [evaluation.id]

    with pytest.raises(AlreadyClaimedError):
        await jobs.claim(db, job.id, "user-2")
    assert (await jobs.get_status(db, job.id)).user_id == "user-1"


@pytest.mark.asyncio
async def test_dispatch_publishes_task(db, monkeypatch):
    sent = []
    monkeypatch.setattr(celery_app, "send_task", lambda name, kwargs=None, **opts: sent.append((name, kwargs)))

    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)
    await jobs.dispatch(job)

    assert sent == [
        (settings.EVALUATION_TASK_NAME, {"job_id": job.id, "url": job.url, "demographics": DEMOGRAPHICS})
    ]


def test_evaluation_task_is_routed_to_its_queue():
    assert _route_task(settings.EVALUATION_TASK_NAME, (), {}, {}) == {"queue": settings.EVALUATION_QUEUE}
    assert _route_task("something.else", (), {}, {}) is None


@pytest.mark.asyncio
async def test_dispatch_failure_leaves_job_pending(db, monkeypatch):
    def broken(*args, **kwargs):
        raise ConnectionError("broker unreachable")

    monkeypatch.setattr(celery_app, "send_task", broken)
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)

    with pytest.raises(DispatchError):
        await jobs.dispatch(job)
    assert (await jobs.get_status(db, job.id)).status == JobStatus.PENDING

    sent = []
    monkeypatch.setattr(celery_app, "send_task", lambda name, kwargs=None, **opts: sent.append(name))
    await jobs.redispatch(db, job.id)
    assert sent == [settings.EVALUATION_TASK_NAME]


@pytest.mark.asyncio
async def test_dispatch_timeout_is_a_dispatch_error(db, monkeypatch):
    monkeypatch.setattr(celery_app, "send_task", lambda *args, **kwargs: time.sleep(0.5))
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)

    with pytest.raises(DispatchError):
        await jobs.dispatch(job, timeout=0.05)


@pytest.mark.asyncio
async def test_redispatch_requires_pending(db):
    job = await jobs.create_job(db, "example.com", DEMOGRAPHICS)
    await jobs.report_status(db, job.id, JobStatus.PROCESSING)

    with pytest.raises(InvalidTransitionError):
        await jobs.redispatch(db, job.id)


@pytest.mark.asyncio
async def test_find_stuck_jobs(db):
    first = await jobs.create_job(db, "example.com/a", DEMOGRAPHICS)
    second = await jobs.create_job(db, "example.com/b", DEMOGRAPHICS)
    done = await jobs.create_job(db, "example.com/c", DEMOGRAPHICS)
    await jobs.report_status(db, done.id, JobStatus.FAILED, error="boom")

    later = utcnow() + timedelta(minutes=45)
    stuck_ids = {j.id for j in await jobs.find_stuck_jobs(db, timedelta(minutes=30), now=later)}
    assert first.id in stuck_ids and second.id in stuck_ids
    assert done.id not in stuck_ids

    assert await jobs.find_stuck_jobs(db, timedelta(minutes=30)) == []
