"""
Tests: notification inbox service and endpoints.
"""

import pytest

from payflow.core.exceptions import NotFoundError, ValidationError
from payflow.models import db as _db
from payflow.services.notification_service import NotificationService


@pytest.fixture()
def users(make_user):
    alice = make_user(role="admin")
    bob = make_user(role="user")
    _db.session.commit()
    return alice, bob


class TestNotificationService:
    def test_create_and_list(self, users):
        alice, bob = users
        NotificationService.create(user_id=alice.id, title="First")
        NotificationService.create(user_id=alice.id, title="Second", message="details")
        NotificationService.create(user_id=bob.id, title="Bob's")

        items, total = NotificationService.list_for_user(alice.id)
        assert total == 2
        assert [n.title for n in items] == ["Second", "First"]
        assert NotificationService.unread_count(alice.id) == 2

    def test_unknown_type_rejected(self, users):
        with pytest.raises(ValidationError):
            NotificationService.create(user_id=users[0].id, title="x", type="sms")

    def test_pagination(self, users):
        alice, _ = users
        for i in range(5):
            NotificationService.create(user_id=alice.id, title=f"n{i}")
        items, total = NotificationService.list_for_user(alice.id, limit=2, offset=1)
        assert total == 5
        assert [n.title for n in items] == ["n3", "n2"]

    def test_mark_read(self, users):
        alice, _ = users
        n = NotificationService.create(user_id=alice.id, title="x")
        NotificationService.mark_read(n.id, user_id=alice.id)
        assert n.is_read is True
        assert n.read_at is not None
        items, total = NotificationService.list_for_user(alice.id, unread_only=True)
        assert (items, total) == ([], 0)

    def test_mark_read_foreign_notification(self, users):
        alice, bob = users
        n = NotificationService.create(user_id=alice.id, title="x")
        with pytest.raises(NotFoundError):
            NotificationService.mark_read(n.id, user_id=bob.id)

    def test_mark_read_unknown(self):
        with pytest.raises(NotFoundError):
            NotificationService.mark_read(4242)

    def test_mark_all_read(self, users):
        alice, bob = users
        NotificationService.create(user_id=alice.id, title="a")
        NotificationService.create(user_id=alice.id, title="b")
        NotificationService.create(user_id=bob.id, title="c")

        assert NotificationService.mark_all_read(alice.id) == 2
        assert NotificationService.unread_count(alice.id) == 0
        assert NotificationService.unread_count(bob.id) == 1
        assert NotificationService.mark_all_read(alice.id) == 0


class TestNotificationApi:
    def test_inbox_for_header_user(self, client, users):
        alice, _ = users
        NotificationService.create(user_id=alice.id, title="hello")

        res = client.get("/api/v1/notifications", headers={"X-User-Id": str(alice.id)})
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["unread_count"] == 1
        assert body["items"][0]["title"] == "hello"

    def test_inbox_requires_owner(self, client):
        res = client.get("/api/v1/notifications")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_unread_count_and_read_all(self, client, users):
        alice, _ = users
        NotificationService.create(user_id=alice.id, title="a")
        NotificationService.create(user_id=alice.id, title="b")

        res = client.get(f"/api/v1/notifications/unread-count?user_id={alice.id}")
        assert res.get_json()["unread_count"] == 2

        res = client.post("/api/v1/notifications/read-all", headers={"X-User-Id": str(alice.id)})
        assert res.get_json()["marked_read"] == 2

    def test_mark_read_of_other_user_is_404(self, client, users):
        alice, bob = users
        n = NotificationService.create(user_id=alice.id, title="a")
        res = client.post(f"/api/v1/notifications/{n.id}/read", headers={"X-User-Id": str(bob.id)})
        assert res.status_code == 404

        res = client.post(f"/api/v1/notifications/{n.id}/read", headers={"X-User-Id": str(alice.id)})
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True
