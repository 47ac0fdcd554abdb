import pytest

from autofill_errors import InvalidStatusTransition, SubmissionNotFound
from submissions import (
    InMemorySubmissionStore,
    SubmissionLifecycle,
    SubmissionStatus,
    check_transition,
    extract_lender_name,
)

URL = "https://www.westlake.example/credit-app"


@pytest.fixture
def lifecycle():
    return SubmissionLifecycle(InMemorySubmissionStore())


def test_extract_lender_name_drops_www():
    assert extract_lender_name(URL) == "westlake.example"
    assert extract_lender_name("https://portal.lender.example/x") == "portal.lender.example"
    assert extract_lender_name("not a url") == "not a url"


@pytest.mark.parametrize(
    "current,target",
    [
        (SubmissionStatus.PENDING, SubmissionStatus.APPROVED),
        (SubmissionStatus.PENDING, SubmissionStatus.DECLINED),
        (SubmissionStatus.ERROR, SubmissionStatus.SUBMITTED),
        (SubmissionStatus.APPROVED, SubmissionStatus.DECLINED),
    ],
)
def test_disallowed_transitions(current, target):
    with pytest.raises(InvalidStatusTransition):
        check_transition(current, target)


@pytest.mark.asyncio
async def test_open_reuses_pending_submission(lifecycle):
    first = await lifecycle.open("dealer-1", "app-1", URL)
    again = await lifecycle.open("dealer-1", "app-1", URL)
    other = await lifecycle.open("dealer-1", "app-1", "https://other.example")

    assert first.id == again.id
    assert other.id != first.id
    assert first.lender_name == "westlake.example"
    assert first.status is SubmissionStatus.PENDING


@pytest.mark.asyncio
async def test_decision_only_after_submission(lifecycle):
    submission = await lifecycle.open("dealer-1", "app-1", URL)

    with pytest.raises(InvalidStatusTransition):
        await lifecycle.set_decision(submission.id, "approved")

    submitted = await lifecycle.mark_submitted(submission.id)
    assert submitted.submitted_at is not None

    approved = await lifecycle.set_decision(submission.id, "approved")
    assert approved.status is SubmissionStatus.APPROVED

    with pytest.raises(InvalidStatusTransition):
        await lifecycle.set_decision(submission.id, SubmissionStatus.ERROR)


@pytest.mark.asyncio
async def test_error_from_any_state_keeps_message(lifecycle):
    submission = await lifecycle.open("dealer-1", "app-1", URL)
    await lifecycle.mark_submitted(submission.id)
    await lifecycle.set_decision(submission.id, SubmissionStatus.DECLINED)

    failed = await lifecycle.mark_error(submission.id, "Portal rejected upload")
    assert failed.status is SubmissionStatus.ERROR
    assert failed.error_message == "Portal rejected upload"


@pytest.mark.asyncio
async def test_unknown_submission_raises(lifecycle):
    with pytest.raises(SubmissionNotFound):
        await lifecycle.mark_submitted("missing")
    with pytest.raises(SubmissionNotFound):
        await lifecycle.note_intervention("missing")


@pytest.mark.asyncio
async def test_interventions_only_go_up(lifecycle):
    submission = await lifecycle.open("dealer-1", "app-1", URL)
    counts = []
    for _ in range(3):
        counts.append((await lifecycle.note_intervention(submission.id)).user_interventions)
    assert counts == [1, 2, 3]


@pytest.mark.asyncio
async def test_dealer_listing_filters_and_pages():
    store = InMemorySubmissionStore()
    for index in range(5):
        await store.create_submission(
            {"dealer_id": "d1", "application_id": f"app-{index % 2}", "lender_url": f"https://l{index}.example"}
        )
    await store.create_submission({"dealer_id": "d2", "application_id": "app-0", "lender_url": URL})

    page = await store.get_submissions_by_dealer("d1", {"limit": 2})
    assert page.total == 5
    assert len(page.submissions) == 2
    assert page.has_more is True
    assert page.submissions[0].created_at >= page.submissions[1].created_at

    tail = await store.get_submissions_by_dealer("d1", {"limit": 2, "offset": 4})
    assert len(tail.submissions) == 1
    assert tail.has_more is False

    only_app_zero = await store.get_submissions_by_dealer("d1", {"application_id": "app-0"})
    assert only_app_zero.total == 3


@pytest.mark.asyncio
async def test_stats_and_delete():
    store = InMemorySubmissionStore()
    a = await store.create_submission({"dealer_id": "d1", "application_id": "a", "lender_url": URL})
    await store.create_submission({"dealer_id": "d1", "application_id": "b", "lender_url": URL})
    await store.update_submission_status(a.id, SubmissionStatus.SUBMITTED)

    stats = await store.get_submission_stats("d1")
    assert stats["total"] == 2
    assert stats["pending"] == 1
    assert stats["submitted"] == 1

    assert await store.delete_submission(a.id) is True
    assert await store.delete_submission(a.id) is False
    assert await store.get_submission_by_id(a.id) is None


@pytest.mark.asyncio
async def test_store_returns_copies():
    store = InMemorySubmissionStore()
    created = await store.create_submission({"dealer_id": "d1", "application_id": "a", "lender_url": URL})
    created.status = SubmissionStatus.APPROVED

    fetched = await store.get_submission_by_id(created.id)
    assert fetched.status is SubmissionStatus.PENDING
