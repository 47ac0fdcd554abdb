# submissions.py
"""Submission records and the status rules the engine enforces on them.

Storage is somebody else's problem: the engine talks to any object that
implements :class:`SubmissionStore`. ``InMemorySubmissionStore`` is the
reference implementation used by the CLI and the tests.

Status flow::

    pending -> submitted -> approved | declined
    (any) -> error
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol
from urllib.parse import urlparse

from autofill_errors import InvalidStatusTransition, SubmissionNotFound


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    DECLINED = "declined"
    ERROR = "error"


ALLOWED_TRANSITIONS = {
    SubmissionStatus.PENDING: {SubmissionStatus.SUBMITTED, SubmissionStatus.ERROR},
    SubmissionStatus.SUBMITTED: {SubmissionStatus.APPROVED, SubmissionStatus.DECLINED, SubmissionStatus.ERROR},
    SubmissionStatus.APPROVED: {SubmissionStatus.ERROR},
    SubmissionStatus.DECLINED: {SubmissionStatus.ERROR},
    SubmissionStatus.ERROR: {SubmissionStatus.ERROR},
}
DECISION_STATUSES = (SubmissionStatus.APPROVED, SubmissionStatus.DECLINED)
CANCELLED_MESSAGE = "Autofill cancelled"


def check_transition(current: SubmissionStatus, target: SubmissionStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, target.value)


def extract_lender_name(url: str) -> str:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return url
    if not host:
        return url
    return host[4:] if host.startswith("www.") else host


@dataclass
class Submission:
    id: str
    dealer_id: str
    application_id: str
    lender_url: str
    lender_name: str = ""
    status: SubmissionStatus = SubmissionStatus.PENDING
    user_interventions: int = 0
    error_message: Optional[str] = None
    submitted_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    automation_plan: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "dealerId": self.dealer_id,
            "applicationId": self.application_id,
            "lenderUrl": self.lender_url,
            "lenderName": self.lender_name,
            "status": self.status.value,
            "userInterventions": self.user_interventions,
            "errorMessage": self.error_message,
            "submittedAt": self.submitted_at.isoformat() if self.submitted_at else None,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class SubmissionPage:
    submissions: List[Submission]
    total: int
    has_more: bool


class SubmissionStore(Protocol):
    async def create_submission(self, fields: Mapping[str, Any]) -> Submission: ...

    async def update_submission_status(
        self, submission_id: str, status: SubmissionStatus, extra: Optional[Mapping[str, Any]] = None
    ) -> Submission: ...

    async def increment_user_interventions(self, submission_id: str) -> Submission: ...

    async def get_submissions_by_dealer(
        self, dealer_id: str, filters: Optional[Mapping[str, Any]] = None
    ) -> SubmissionPage: ...

    async def get_submission_by_id(self, submission_id: str) -> Optional[Submission]: ...


class InMemorySubmissionStore:
    """Keeps submissions in a dict. Returned records are copies."""

    _CREATE_FIELDS = {
        "dealer_id",
        "application_id",
        "lender_url",
        "lender_name",
        "status",
        "user_interventions",
        "error_message",
        "submitted_at",
        "automation_plan",
    }
    _EXTRA_FIELDS = {"error_message", "submitted_at"}

    def __init__(self) -> None:
        self._records: Dict[str, Submission] = {}

    def _get(self, submission_id: str) -> Submission:
        record = self._records.get(submission_id)
        if record is None:
            raise SubmissionNotFound(submission_id)
        return record

    async def create_submission(self, fields: Mapping[str, Any]) -> Submission:
        data = {k: v for k, v in fields.items() if k in self._CREATE_FIELDS}
        data["status"] = SubmissionStatus(data.get("status") or SubmissionStatus.PENDING)
        record = Submission(id=uuid.uuid4().hex, **data)
        if not record.lender_name:
            record.lender_name = extract_lender_name(record.lender_url)
        self._records[record.id] = record
        return replace(record)

    async def update_submission_status(
        self, submission_id: str, status: SubmissionStatus, extra: Optional[Mapping[str, Any]] = None
    ) -> Submission:
        record = self._get(submission_id)
        record.status = SubmissionStatus(status)
        for key, value in (extra or {}).items():
            if key in self._EXTRA_FIELDS:
                setattr(record, key, value)
        record.updated_at = datetime.now(UTC)
        return replace(record)

    async def increment_user_interventions(self, submission_id: str) -> Submission:
        record = self._get(submission_id)
        record.user_interventions += 1
        record.updated_at = datetime.now(UTC)
        return replace(record)

    async def get_submissions_by_dealer(
        self, dealer_id: str, filters: Optional[Mapping[str, Any]] = None
    ) -> SubmissionPage:
        filters = filters or {}
        matches = [r for r in self._records.values() if r.dealer_id == dealer_id]
        if filters.get("application_id"):
            matches = [r for r in matches if r.application_id == filters["application_id"]]
        if filters.get("status"):
            wanted = SubmissionStatus(filters["status"])
            matches = [r for r in matches if r.status is wanted]
        matches.sort(key=lambda r: r.created_at, reverse=True)

        limit = int(filters.get("limit", 50))
        offset = int(filters.get("offset", 0))
        window = matches[offset:offset + limit]
        return SubmissionPage(
            submissions=[replace(r) for r in window],
            total=len(matches),
            has_more=offset + limit < len(matches),
        )

    async def get_submission_by_id(self, submission_id: str) -> Optional[Submission]:
        record = self._records.get(submission_id)
        return replace(record) if record else None

    async def delete_submission(self, submission_id: str) -> bool:
        return self._records.pop(submission_id, None) is not None

    async def get_submission_stats(self, dealer_id: str) -> Dict[str, int]:
        stats = {status.value: 0 for status in SubmissionStatus}
        total = 0
        for record in self._records.values():
            if record.dealer_id != dealer_id:
                continue
            stats[record.status.value] += 1
            total += 1
        stats["total"] = total
        return stats


class SubmissionLifecycle:
    """Applies run outcomes and manual decisions to submissions in a store."""

    def __init__(self, store: SubmissionStore) -> None:
        self.store = store

    async def _require(self, submission_id: str) -> Submission:
        submission = await self.store.get_submission_by_id(submission_id)
        if submission is None:
            raise SubmissionNotFound(submission_id)
        return submission

    async def open(
        self,
        dealer_id: str,
        application_id: str,
        lender_url: str,
        plan: Optional[Dict[str, Any]] = None,
    ) -> Submission:
        """Reuse the pending submission for this lender, or create one."""
        page = await self.store.get_submissions_by_dealer(
            dealer_id, {"application_id": application_id, "status": SubmissionStatus.PENDING.value}
        )
        for existing in page.submissions:
            if existing.lender_url == lender_url:
                return existing
        return await self.store.create_submission(
            {
                "dealer_id": dealer_id,
                "application_id": application_id,
                "lender_url": lender_url,
                "lender_name": extract_lender_name(lender_url),
                "status": SubmissionStatus.PENDING,
                "automation_plan": plan,
            }
        )

    async def mark_submitted(self, submission_id: str) -> Submission:
        submission = await self._require(submission_id)
        check_transition(submission.status, SubmissionStatus.SUBMITTED)
        return await self.store.update_submission_status(
            submission_id, SubmissionStatus.SUBMITTED, {"submitted_at": datetime.now(UTC)}
        )

    async def mark_error(self, submission_id: str, message: Optional[str]) -> Submission:
        submission = await self._require(submission_id)
        check_transition(submission.status, SubmissionStatus.ERROR)
        return await self.store.update_submission_status(
            submission_id, SubmissionStatus.ERROR, {"error_message": message or "Unknown error"}
        )

    async def note_intervention(self, submission_id: str) -> Submission:
        return await self.store.increment_user_interventions(submission_id)

    async def set_decision(self, submission_id: str, status: SubmissionStatus | str) -> Submission:
        """Record a lender decision entered by hand."""
        target = SubmissionStatus(status)
        if target not in DECISION_STATUSES:
            raise InvalidStatusTransition("manual", target.value)
        submission = await self._require(submission_id)
        check_transition(submission.status, target)
        return await self.store.update_submission_status(submission_id, target)
