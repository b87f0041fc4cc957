"""Notification persistence, idempotent read-state and live push."""
import uuid

import pytest

from insureconnect.core.exceptions import NotFoundError
from insureconnect.db.enums import NotificationType
from insureconnect.db.models import Notification
from insureconnect.services import notification_service


def _notify(session_factory, user, title="Hello", registry=None):
    with session_factory() as session:
        return notification_service.notify(
            session, user.id, NotificationType.TOKENS, title, "Body", registry=registry
        )


def test_notify_persists_when_user_offline(session_factory, db, make_user, registry):
    user = make_user()

    note = _notify(session_factory, user, registry=registry)

    assert note.read is False
    assert notification_service.get_unread_count(db, user.id) == 1


def test_notify_pushes_record_then_unread_count(session_factory, make_user, registry, make_connection):
    user = make_user()
    first, second = make_connection(), make_connection()
    registry.add(user.id, first)
    registry.add(user.id, second)

    note = _notify(session_factory, user, title="Tokens Added", registry=registry)

    for conn in (first, second):
        assert [f["event"] for f in conn.frames] == ["notification", "unread-count"]
        assert conn.frames[0]["data"]["id"] == str(note.id)
        assert conn.frames[0]["data"]["title"] == "Tokens Added"
        assert conn.frames[1]["data"] == {"count": 1}


def test_push_reaches_only_the_recipient(session_factory, make_user, registry, make_connection):
    user, other = make_user(), make_user()
    other_conn = make_connection()
    registry.add(other.id, other_conn)

    _notify(session_factory, user, registry=registry)

    assert other_conn.frames == []


def test_mark_read_is_idempotent(session_factory, make_user):
    user = make_user()
    note = _notify(session_factory, user)

    with session_factory() as session:
        notification_service.mark_read(session, note.id, user.id)
    with session_factory() as session:
        first_read_at = session.get(Notification, note.id).read_at
    with session_factory() as session:
        again = notification_service.mark_read(session, note.id, user.id)

    assert again.read is True
    assert again.read_at == first_read_at
    with session_factory() as session:
        assert notification_service.get_unread_count(session, user.id) == 0


def test_mark_read_scoped_to_owner(session_factory, db, make_user):
    owner, other = make_user(), make_user()
    note = _notify(session_factory, owner)

    with pytest.raises(NotFoundError):
        notification_service.mark_read(db, note.id, other.id)
    with pytest.raises(NotFoundError):
        notification_service.mark_read(db, uuid.uuid4(), owner.id)


def test_mark_all_read_counts_only_unread(session_factory, db, make_user):
    user = make_user()
    first = _notify(session_factory, user)
    _notify(session_factory, user)
    _notify(session_factory, user)
    with session_factory() as session:
        notification_service.mark_read(session, first.id, user.id)

    assert notification_service.mark_all_read(db, user.id) == 2
    assert notification_service.mark_all_read(db, user.id) == 0
    assert notification_service.get_unread_count(db, user.id) == 0


def test_delete_is_idempotent_and_scoped(session_factory, db, make_user):
    owner, other = make_user(), make_user()
    note = _notify(session_factory, owner)

    assert notification_service.delete_notification(db, note.id, other.id) is False
    assert notification_service.count_notifications(db, owner.id) == 1
    assert notification_service.delete_notification(db, note.id, owner.id) is True
    assert notification_service.delete_notification(db, note.id, owner.id) is False
    assert notification_service.count_notifications(db, owner.id) == 0


def test_list_newest_first_and_unread_filter(session_factory, db, make_user):
    user = make_user()
    oldest = _notify(session_factory, user, title="one")
    _notify(session_factory, user, title="two")
    _notify(session_factory, user, title="three")
    with session_factory() as session:
        notification_service.mark_read(session, oldest.id, user.id)

    everything = notification_service.get_notifications(db, user.id)
    assert [n.title for n in everything] == ["three", "two", "one"]

    unread = notification_service.get_notifications(db, user.id, unread_only=True)
    assert [n.title for n in unread] == ["three", "two"]

    page_two = notification_service.get_notifications(db, user.id, limit=2, offset=2)
    assert [n.title for n in page_two] == ["one"]
