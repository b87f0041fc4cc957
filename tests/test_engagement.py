"""Likes and comments on approved posts."""
import pytest
from sqlalchemy import select

from insureconnect.core.exceptions import NotFoundError, ValidationError
from insureconnect.db.enums import NotificationType
from insureconnect.db.models import Notification
from insureconnect.services import post_service


@pytest.fixture
def author(make_user):
    return make_user(tokens=50, name="Avery Agent")


@pytest.fixture
def approved_post(session_factory, author, admin):
    with session_factory() as session:
        post = post_service.submit_post(
            session, author.id, "Flood coverage", "Standard home policies exclude floods.", "property"
        )
        return post_service.approve_post(session, post.id, admin.id)


def _notification_types(session_factory, user_id) -> list[str]:
    with session_factory() as session:
        return list(
            session.execute(
                select(Notification.type)
                .where(Notification.user_id == user_id)
                .order_by(Notification.created_at)
            ).scalars()
        )


def test_toggle_like_twice_unlikes(session_factory, make_user, approved_post):
    reader = make_user()

    with session_factory() as session:
        assert post_service.toggle_like(session, approved_post.id, reader.id) is True
    with session_factory() as session:
        reads = post_service.to_post_reads(session, [post_service.get_post_or_404(session, approved_post.id)], reader.id)
        assert reads[0].likes == 1
        assert reads[0].is_liked is True
    with session_factory() as session:
        assert post_service.toggle_like(session, approved_post.id, reader.id) is False
    with session_factory() as session:
        reads = post_service.to_post_reads(session, [post_service.get_post_or_404(session, approved_post.id)], reader.id)
        assert reads[0].likes == 0
        assert reads[0].is_liked is False


def test_like_notifies_author_but_not_on_self_like(session_factory, make_user, author, approved_post):
    reader = make_user(name="Riley Reader")

    with session_factory() as session:
        post_service.toggle_like(session, approved_post.id, author.id)
    with session_factory() as session:
        post_service.toggle_like(session, approved_post.id, reader.id)

    assert _notification_types(session_factory, author.id) == [
        NotificationType.POST_APPROVED.value,
        NotificationType.LIKE.value,
    ]


def test_cannot_engage_with_pending_post(session_factory, make_user, author):
    reader = make_user()
    with session_factory() as session:
        pending = post_service.submit_post(session, author.id, "Draft", "Not reviewed yet", "life")

    with session_factory() as session:
        with pytest.raises(NotFoundError):
            post_service.toggle_like(session, pending.id, reader.id)
        with pytest.raises(NotFoundError):
            post_service.add_comment(session, pending.id, reader.id, "Nice")
        with pytest.raises(NotFoundError):
            post_service.list_comments(session, pending.id)


def test_comments_listed_oldest_first_with_author(session_factory, make_user, author, approved_post):
    reader = make_user(name="Riley Reader")

    with session_factory() as session:
        first = post_service.add_comment(session, approved_post.id, reader.id, "  Good point  ")
    with session_factory() as session:
        post_service.add_comment(session, approved_post.id, author.id, "Thanks!")

    assert first.content == "Good point"
    assert first.user.name == "Riley Reader"
    with session_factory() as session:
        comments = post_service.list_comments(session, approved_post.id)
        assert [c.content for c in comments] == ["Good point", "Thanks!"]

    # Self-comment does not notify
    assert _notification_types(session_factory, author.id).count(NotificationType.COMMENT.value) == 1


def test_empty_comment_rejected(db, make_user, approved_post):
    reader = make_user()

    with pytest.raises(ValidationError):
        post_service.add_comment(db, approved_post.id, reader.id, "   ")
