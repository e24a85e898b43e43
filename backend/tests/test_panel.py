import asyncio
import time

import pytest
from sqlalchemy import func, select

from evalcouncil.config import settings
from evalcouncil.exceptions import (
    AlreadyInProgressError,
    ModelNotFoundError,
    NotEvaluationOwnerError,
    ProviderError,
)
from evalcouncil.inference.opinion_provider import DeterministicOpinionProvider
from evalcouncil.models import AXModelEvaluation, JobStatus, TransactionKind
from evalcouncil.schemas import AXModelConfigUpdate, PendingModelEvaluation
from evalcouncil.services import ledger, model_configs, panel


class RaisingProvider:
    def get_opinion(self, model_identifier, subject_description, max_output_size):
        raise ProviderError("OpenRouter API error: Service Unavailable")


class SlowProvider:
    def get_opinion(self, model_identifier, subject_description, max_output_size):
        time.sleep(0.5)
        return "{}"


class LateProvider(DeterministicOpinionProvider):
    """Answers with a valid opinion, but only after the caller has given up."""

    def __init__(self, delay):
        super().__init__()
        self.delay = delay
        self.finished = False

    def get_opinion(self, model_identifier, subject_description, max_output_size):
        time.sleep(self.delay)
        raw = super().get_opinion(model_identifier, subject_description, max_output_size)
        self.finished = True
        return raw


class GarbageProvider:
    def get_opinion(self, model_identifier, subject_description, max_output_size):
        return "I am unable to evaluate this page."


class RecordingProvider(DeterministicOpinionProvider):
    def __init__(self):
        super().__init__()
        self.calls = []

    def get_opinion(self, model_identifier, subject_description, max_output_size):
        self.calls.append((model_identifier, subject_description, max_output_size))
        return super().get_opinion(model_identifier, subject_description, max_output_size)


async def _pair_count(db, evaluation_id):
    return (
        await db.execute(
            select(func.count(AXModelEvaluation.id)).where(AXModelEvaluation.evaluation_id == evaluation_id)
        )
    ).scalar_one()


@pytest.mark.asyncio
async def test_start_completes_with_opinion(db, seeded_models, evaluation):
    provider = RecordingProvider()

    row = await panel.start(db, evaluation.id, "gpt", provider=provider)

    assert row.status == JobStatus.COMPLETED
    assert row.ax_score == 72
    assert row.anps == 42
    assert row.ax_recommendations == ["Publish a sitemap.xml", "Add JSON-LD product markup"]
    assert row.ax_factors[0]["name"] == "Structured Data"
    assert row.completed_at is not None

    model_identifier, subject, max_output_size = provider.calls[0]
    assert model_identifier == "openai/gpt-4o"
    assert "https://example.com" in subject
    assert max_output_size > 0


@pytest.mark.asyncio
async def test_start_rejects_while_processing(db, seeded_models, evaluation):
    db.add(AXModelEvaluation(evaluation_id=evaluation.id, model_id="gpt", status=JobStatus.PROCESSING))
    await db.commit()

    with pytest.raises(AlreadyInProgressError):
        await panel.start(db, evaluation.id, "gpt", provider=DeterministicOpinionProvider())

    assert await _pair_count(db, evaluation.id) == 1
    assert (await panel.get_status(db, evaluation.id, "gpt")).status == JobStatus.PROCESSING


@pytest.mark.asyncio
async def test_restart_replaces_terminal_row(db, seeded_models, evaluation):
    await panel.start(db, evaluation.id, "gpt", provider=RaisingProvider())
    row = await panel.start(db, evaluation.id, "gpt", provider=DeterministicOpinionProvider(ax_score=90))

    assert row.status == JobStatus.COMPLETED
    assert row.ax_score == 90
    assert row.error_message is None
    assert await _pair_count(db, evaluation.id) == 1


@pytest.mark.asyncio
async def test_provider_error_marks_failed(db, seeded_models, evaluation):
    row = await panel.start(db, evaluation.id, "claude", provider=RaisingProvider())

    assert row.status == JobStatus.FAILED
    assert "Service Unavailable" in row.error_message
    assert row.ax_score is None


@pytest.mark.asyncio
async def test_provider_timeout_marks_failed(db, seeded_models, evaluation):
    row = await panel.start(db, evaluation.id, "claude", provider=SlowProvider(), timeout=0.05)

    assert row.status == JobStatus.FAILED
    assert "timed out" in row.error_message


@pytest.mark.asyncio
async def test_late_result_after_timeout_is_discarded(db, seeded_models, evaluation, ledger_check):
    evaluation.user_id = "owner-1"
    await db.commit()
    await ledger.credit(db, "owner-1", 5, TransactionKind.PURCHASE, "Pack")
    provider = LateProvider(delay=0.3)

    row = await panel.start(db, evaluation.id, "gpt", provider=provider, timeout=0.05, requester_id="owner-1")
    assert row.status == JobStatus.FAILED

    await asyncio.sleep(0.6)
    assert provider.finished

    stored = await panel.get_status(db, evaluation.id, "gpt")
    assert stored.status == JobStatus.FAILED
    assert stored.ax_score is None
    assert "timed out" in stored.error_message
    assert await ledger_check("owner-1") == 5


@pytest.mark.asyncio
async def test_unparseable_response_marks_failed(db, seeded_models, evaluation):
    row = await panel.start(db, evaluation.id, "gemini", provider=GarbageProvider())

    assert row.status == JobStatus.FAILED
    assert row.raw_response == "I am unable to evaluate this page."
    assert row.error_message


@pytest.mark.asyncio
async def test_unknown_or_disabled_model(db, seeded_models, evaluation):
    with pytest.raises(ModelNotFoundError):
        await panel.start(db, evaluation.id, "mystery", provider=DeterministicOpinionProvider())

    await model_configs.update_model(db, "grok", AXModelConfigUpdate(is_enabled=False))
    with pytest.raises(ModelNotFoundError):
        await panel.start(db, evaluation.id, "grok", provider=DeterministicOpinionProvider())


@pytest.mark.asyncio
async def test_completed_opinion_debits_owner(db, seeded_models, evaluation, ledger_check):
    evaluation.user_id = "owner-1"
    await db.commit()
    await ledger.credit(db, "owner-1", 5, TransactionKind.PURCHASE, "Pack")

    await panel.start(db, evaluation.id, "gpt", provider=DeterministicOpinionProvider(), requester_id="owner-1")

    transactions = await ledger.list_transactions(db, "owner-1")
    assert transactions[0].amount == -1
    assert transactions[0].description == "AX evaluation: GPT-4o"
    assert await ledger_check("owner-1") == 4


@pytest.mark.asyncio
async def test_failed_opinion_is_free(db, seeded_models, evaluation, ledger_check):
    evaluation.user_id = "owner-1"
    await db.commit()
    await ledger.credit(db, "owner-1", 5, TransactionKind.PURCHASE, "Pack")

    await panel.start(db, evaluation.id, "gpt", provider=RaisingProvider(), requester_id="owner-1")

    assert await ledger_check("owner-1") == 5


@pytest.mark.asyncio
async def test_failed_debit_keeps_opinion(db, seeded_models, evaluation):
    evaluation.user_id = "broke-user"
    await db.commit()

    row = await panel.start(
        db, evaluation.id, "gpt", provider=DeterministicOpinionProvider(), requester_id="broke-user"
    )

    assert row.status == JobStatus.COMPLETED
    assert await ledger.get_balance(db, "broke-user") == 0


@pytest.mark.asyncio
async def test_status_and_overview(db, seeded_models, evaluation):
    status = await panel.get_status(db, evaluation.id, "gpt")
    assert isinstance(status, PendingModelEvaluation)
    assert not await panel.all_terminal(db, evaluation.id)

    for model in seeded_models[:-1]:
        await panel.start(db, evaluation.id, model.model_id, provider=DeterministicOpinionProvider())
    overview = await panel.panel_overview(db, evaluation.id)
    assert [m.status for m in overview.models] == ["completed", "completed", "completed", "pending"]
    assert not overview.all_terminal
    assert not overview.council_ready

    await panel.start(db, evaluation.id, seeded_models[-1].model_id, provider=RaisingProvider())
    overview = await panel.panel_overview(db, evaluation.id)
    assert overview.all_terminal
    assert overview.council_ready
    assert overview.council_result is None
    assert await panel.all_terminal(db, evaluation.id)


@pytest.mark.asyncio
async def test_no_enabled_models_is_never_terminal(db, evaluation):
    assert not await panel.all_terminal(db, evaluation.id)


@pytest.mark.asyncio
async def test_only_the_owner_can_run_an_owned_evaluation(db, seeded_models, evaluation, ledger_check):
    evaluation.user_id = "victim"
    await db.commit()
    await ledger.credit(db, "victim", 5, TransactionKind.PURCHASE, "Pack")

    for requester in (None, "someone-else"):
        with pytest.raises(NotEvaluationOwnerError):
            await panel.start(
                db, evaluation.id, "gpt", provider=DeterministicOpinionProvider(), requester_id=requester
            )

    assert await _pair_count(db, evaluation.id) == 0
    assert await ledger_check("victim") == 5


@pytest.mark.asyncio
async def test_anonymous_evaluation_is_never_billed(db, seeded_models, evaluation):
    row = await panel.start(
        db, evaluation.id, "gpt", provider=DeterministicOpinionProvider(), requester_id="bystander"
    )

    assert row.status == JobStatus.COMPLETED
    assert await ledger.list_transactions(db, "bystander") == []


@pytest.mark.asyncio
async def test_admin_first_debit_keeps_admin_seed(db, seeded_models, evaluation, ledger_check):
    evaluation.user_id = "admin-1"
    await db.commit()

    await panel.start(
        db,
        evaluation.id,
        "gpt",
        provider=DeterministicOpinionProvider(),
        requester_id="admin-1",
        requester_email=settings.ADMIN_EMAIL,
    )

    assert await ledger_check("admin-1") == settings.ADMIN_INITIAL_CREDITS - 1
