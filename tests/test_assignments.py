"""
Tests: responsible-person assignment, trash and request log housekeeping.
"""

import pytest

from payflow.core.exceptions import NotFoundError, ValidationError
from payflow.models import db as _db
from payflow.services import assignment_service, payment_request_service


@pytest.fixture()
def staff(make_user):
    boss = make_user(role="admin")
    first = make_user(role="user")
    second = make_user(role="user")
    _db.session.commit()
    return boss, first, second


class TestAssignResponsible:
    def test_first_assignment(self, make_request, staff):
        boss, first, _ = staff
        pr = make_request()

        a = assignment_service.assign_responsible(pr.id, first.id, boss.id)
        _db.session.commit()

        assert a.is_current is True
        assert assignment_service.current_assignment(pr.id).assigned_user_id == first.id
        log = payment_request_service.list_logs(pr.id)[-1]
        assert log.action == "assign"
        assert log.details == {"assigned_user_id": first.id, "previous_user_id": None}

    def test_reassignment_keeps_history(self, make_request, staff):
        boss, first, second = staff
        pr = make_request()
        assignment_service.assign_responsible(pr.id, first.id, boss.id)
        _db.session.commit()
        assignment_service.assign_responsible(pr.id, second.id, boss.id)
        _db.session.commit()

        history = assignment_service.assignment_history(pr.id)
        assert [(h.assigned_user_id, h.is_current) for h in history] == [
            (second.id, True),
            (first.id, False),
        ]
        assert payment_request_service.list_logs(pr.id)[-1].details["previous_user_id"] == first.id

    def test_inactive_assignee_rejected(self, make_request, make_user, staff):
        boss = staff[0]
        gone = make_user(is_active=False)
        _db.session.commit()
        pr = make_request()
        with pytest.raises(ValidationError):
            assignment_service.assign_responsible(pr.id, gone.id, boss.id)

    def test_counterparty_user_cannot_be_assigned(self, make_request, make_user, staff):
        boss = staff[0]
        outsider = make_user(role="counterparty_user")
        _db.session.commit()
        pr = make_request()
        with pytest.raises(ValidationError):
            assignment_service.assign_responsible(pr.id, outsider.id, boss.id)

    def test_unknown_user(self, make_request, staff):
        pr = make_request()
        with pytest.raises(NotFoundError):
            assignment_service.assign_responsible(pr.id, 9999, staff[0].id)

    def test_unknown_request(self, staff):
        with pytest.raises(NotFoundError):
            assignment_service.assign_responsible(9999, staff[1].id, staff[0].id)


class TestTrash:
    def test_soft_delete_and_restore(self, make_request, staff):
        boss = staff[0]
        pr = make_request()

        payment_request_service.soft_delete(pr.id, boss.id)
        _db.session.commit()
        assert payment_request_service.list_requests().all() == []
        assert [p.id for p in payment_request_service.list_trash()] == [pr.id]
        with pytest.raises(NotFoundError):
            payment_request_service.get_request(pr.id)

        payment_request_service.restore(pr.id, boss.id)
        _db.session.commit()
        assert [p.id for p in payment_request_service.list_requests().all()] == [pr.id]
        actions = [entry.action for entry in payment_request_service.list_logs(pr.id)]
        assert actions == ["submit", "deleted", "restored"]

    def test_restore_live_request_fails(self, make_request, staff):
        pr = make_request()
        with pytest.raises(ValidationError):
            payment_request_service.restore(pr.id, staff[0].id)

    def test_list_filters(self, make_request, make_counterparty, staff):
        other = make_counterparty()
        _db.session.commit()
        mine = make_request()
        theirs = make_request(counterparty_id=other.id)

        by_cp = payment_request_service.list_requests(counterparty_id=other.id).all()
        assert [p.id for p in by_cp] == [theirs.id]
        by_status = payment_request_service.list_requests(status_code="sent").all()
        assert sorted(p.id for p in by_status) == sorted([mine.id, theirs.id])
        assert payment_request_service.list_requests(status_code="approved").all() == []
