"""
Tests: decision ledger.

Rows are seeded directly against a request that has no chain, so the
engine never touches them and every ledger rule can be checked in isolation.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from payflow.core.exceptions import (
    AlreadyDecidedError,
    DecisionNotFoundError,
    StageConfigMissingError,
    ValidationError,
)
from payflow.models import db as _db
from payflow.models.approval import DECISION_APPROVED, DECISION_PENDING, DECISION_REJECTED
from payflow.services import decision_ledger


@pytest.fixture()
def unstaged_request(make_request):
    pr = make_request()
    assert pr.current_stage is None
    return pr


@pytest.fixture()
def two_departments(make_department):
    a, b = make_department(), make_department()
    _db.session.commit()
    return a, b


class TestSeedStage:
    def test_seed_creates_pending_rows(self, unstaged_request, two_departments):
        a, b = two_departments
        rows = decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id, b.id])
        _db.session.commit()

        assert len(rows) == 2
        assert all(r.status == DECISION_PENDING for r in rows)
        assert all(r.comment == "" and r.user_id is None and r.decided_at is None for r in rows)
        assert decision_ledger.count_pending(unstaged_request.id, 1, 1) == 2

    def test_empty_department_list_raises(self, unstaged_request):
        with pytest.raises(StageConfigMissingError) as exc:
            decision_ledger.seed_stage(unstaged_request.id, 1, 3, [])
        assert exc.value.stage_order == 3

    def test_duplicate_seed_rejected_by_unique_key(self, unstaged_request, two_departments):
        a, _ = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        _db.session.commit()

        with pytest.raises(IntegrityError):
            decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        _db.session.rollback()

        assert len(decision_ledger.stage_rows(unstaged_request.id, 1, 1)) == 1

    def test_same_stage_in_new_cycle_is_allowed(self, unstaged_request, two_departments):
        a, _ = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        decision_ledger.seed_stage(unstaged_request.id, 2, 1, [a.id])
        _db.session.commit()
        assert len(decision_ledger.list_decisions(unstaged_request.id)) == 2


class TestRecordDecision:
    def test_approve_sets_fields(self, unstaged_request, two_departments, make_user):
        a, b = two_departments
        user = make_user(department_id=a.id)
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id, b.id])
        _db.session.commit()

        d = decision_ledger.record_decision(
            unstaged_request.id, 1, 1, a.id, DECISION_APPROVED, user.id, "Looks fine",
        )
        _db.session.commit()

        assert d.status == DECISION_APPROVED
        assert d.user_id == user.id
        assert d.comment == "Looks fine"
        assert d.decided_at is not None
        assert decision_ledger.count_pending(unstaged_request.id, 1, 1) == 1

    def test_reject_with_none_comment_stores_empty_string(self, unstaged_request, two_departments):
        a, _ = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        d = decision_ledger.record_decision(unstaged_request.id, 1, 1, a.id, DECISION_REJECTED, None, None)
        assert d.status == DECISION_REJECTED
        assert d.comment == ""

    def test_unknown_department_raises_not_found(self, unstaged_request, two_departments):
        a, b = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        with pytest.raises(DecisionNotFoundError):
            decision_ledger.record_decision(unstaged_request.id, 1, 1, b.id, DECISION_APPROVED, None, "")

    def test_wrong_cycle_raises_not_found(self, unstaged_request, two_departments):
        a, _ = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        with pytest.raises(DecisionNotFoundError):
            decision_ledger.record_decision(unstaged_request.id, 2, 1, a.id, DECISION_APPROVED, None, "")

    def test_second_decision_raises_already_decided(self, unstaged_request, two_departments):
        a, _ = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        first = decision_ledger.record_decision(unstaged_request.id, 1, 1, a.id, DECISION_APPROVED, None, "ok")
        _db.session.commit()

        with pytest.raises(AlreadyDecidedError) as exc:
            decision_ledger.record_decision(unstaged_request.id, 1, 1, a.id, DECISION_REJECTED, None, "no")
        assert exc.value.decision_id == first.id
        assert exc.value.status == DECISION_APPROVED

        _db.session.rollback()
        row = decision_ledger.stage_rows(unstaged_request.id, 1, 1)[0]
        assert row.status == DECISION_APPROVED
        assert row.comment == "ok"

    def test_invalid_status(self, unstaged_request, two_departments):
        a, _ = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        with pytest.raises(ValidationError):
            decision_ledger.record_decision(unstaged_request.id, 1, 1, a.id, DECISION_PENDING, None, "")

    def test_files_are_attached(self, unstaged_request, two_departments, make_user):
        a, _ = two_departments
        user = make_user(department_id=a.id)
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        d = decision_ledger.record_decision(
            unstaged_request.id, 1, 1, a.id, DECISION_APPROVED, user.id, "",
            files=[
                {"file_name": "invoice.pdf", "file_key": "pr/1/invoice.pdf", "file_size": 1200,
                 "mime_type": "application/pdf"},
                {"file_name": "act.pdf", "file_key": "pr/1/act.pdf"},
            ],
        )
        _db.session.commit()

        body = d.to_dict()
        assert [f["file_name"] for f in body["files"]] == ["invoice.pdf", "act.pdf"]
        assert body["files"][0]["created_by"] == user.id

    def test_file_without_key_is_rejected(self, unstaged_request, two_departments):
        a, _ = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        with pytest.raises(ValidationError):
            decision_ledger.record_decision(
                unstaged_request.id, 1, 1, a.id, DECISION_APPROVED, None, "",
                files=[{"file_name": "x.pdf"}],
            )

    def test_file_entry_must_be_an_object(self, unstaged_request, two_departments):
        a, _ = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        with pytest.raises(ValidationError, match="file_name and file_key"):
            decision_ledger.record_decision(
                unstaged_request.id, 1, 1, a.id, DECISION_APPROVED, None, "",
                files=["scan.pdf"],
            )


class TestListDecisions:
    def test_ordered_by_cycle_stage_department(self, unstaged_request, two_departments):
        a, b = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 2, 1, [a.id])
        decision_ledger.seed_stage(unstaged_request.id, 1, 2, [b.id, a.id])
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [b.id])
        _db.session.commit()

        rows = decision_ledger.list_decisions(unstaged_request.id)
        keys = [(r.cycle, r.stage_order, r.department_id) for r in rows]
        assert keys == [
            (1, 1, b.id),
            (1, 2, min(a.id, b.id)),
            (1, 2, max(a.id, b.id)),
            (2, 1, a.id),
        ]

    def test_filter_by_cycle(self, unstaged_request, two_departments):
        a, _ = two_departments
        decision_ledger.seed_stage(unstaged_request.id, 1, 1, [a.id])
        decision_ledger.seed_stage(unstaged_request.id, 2, 1, [a.id])
        _db.session.commit()
        rows = decision_ledger.list_decisions(unstaged_request.id, cycle=2)
        assert [r.cycle for r in rows] == [2]

    def test_unknown_request_is_empty(self):
        assert decision_ledger.list_decisions(424242) == []
