"""Member search, post search, profile updates and the admin member list."""
import uuid

import pytest

from insureconnect.core.exceptions import ConflictError, NotFoundError, ValidationError
from insureconnect.db.models import User
from insureconnect.services import post_service, search_service, user_service
from insureconnect.services.search_service import SearchScope


def _approved_post(session_factory, author, admin, title, content="Plain text body."):
    with session_factory() as session:
        post = post_service.submit_post(session, author.id, title, content, "auto")
        post_service.approve_post(session, post.id, admin.id)
    return post


# =============================================================================
# Search
# =============================================================================

@pytest.mark.parametrize("query", [None, "", " ", "a", " b "])
def test_query_shorter_than_two_characters_is_rejected(db, query):
    with pytest.raises(ValidationError, match="at least 2 characters"):
        search_service.search(db, query)


def test_user_search_matches_name_or_email_case_insensitively(db, make_user):
    by_name = make_user(name="Jordan Underwriter")
    by_email = make_user(name="Sam", email="underwriting.desk@insureconnect.io")
    make_user(name="Unrelated")

    users, total = search_service.search_users(db, "  UNDERWRIT ")

    assert total == 2
    assert {u.id for u in users} == {by_name.id, by_email.id}


def test_user_search_skips_disabled_accounts(db, session_factory, make_user):
    disabled = make_user(name="Quiet Adjuster")
    with session_factory() as session:
        session.get(User, disabled.id).is_active = False
        session.commit()

    users, total = search_service.search_users(db, "adjuster")

    assert (users, total) == ([], 0)


def test_user_search_treats_wildcards_literally(db, make_user):
    make_user(name="Percent Pat")
    literal = make_user(name="100% Covered")

    users, _ = search_service.search_users(db, "0%")

    assert [u.id for u in users] == [literal.id]
    db.rollback()  # release the BEGIN IMMEDIATE write lock before other sessions write

    make_user(name="Plan axb")
    underscored = make_user(name="Plan a_b")

    users, _ = search_service.search_users(db, "a_b")

    assert [u.id for u in users] == [underscored.id]


def test_user_search_paginates(db, make_user):
    for i in range(3):
        make_user(name=f"Agent Kim {i}")

    first, total = search_service.search_users(db, "agent kim", page=1, limit=2)
    second, _ = search_service.search_users(db, "agent kim", page=2, limit=2)

    assert total == 3
    assert [u.name for u in first] == ["Agent Kim 0", "Agent Kim 1"]
    assert [u.name for u in second] == ["Agent Kim 2"]


def test_post_search_only_returns_approved_posts_newest_first(session_factory, db, make_user, admin):
    author = make_user(tokens=30)
    older = _approved_post(session_factory, author, admin, "Hail damage claims")
    newer = _approved_post(session_factory, author, admin, "Roof checklist", "What HAIL does to shingles.")
    with session_factory() as session:
        post_service.submit_post(session, author.id, "Hail season", "Still pending review.", "auto")

    posts = search_service.search_posts(db, "hail")

    assert [p.id for p in posts] == [newer.id, older.id]


def test_scoped_search_returns_requested_sections(session_factory, db, make_user, admin):
    author = make_user(tokens=10, name="Marine Mo")
    _approved_post(session_factory, author, admin, "Marine cargo cover")

    assert set(search_service.search(db, "marine")) == {"posts", "users"}
    assert set(search_service.search(db, "marine", scope=SearchScope.POSTS)) == {"posts"}
    assert set(search_service.search(db, "marine", scope=SearchScope.USERS)) == {"users"}


# =============================================================================
# Profile updates
# =============================================================================

def test_update_profile_changes_only_given_fields(session_factory, make_user):
    user = make_user(name="Before", email="before@insureconnect.io")

    with session_factory() as session:
        user_service.update_profile(session, user.id, name="  After  ")

    with session_factory() as session:
        reloaded = session.get(User, user.id)
        assert reloaded.name == "After"
        assert reloaded.email == "before@insureconnect.io"
        assert reloaded.token_balance == user.token_balance


def test_update_profile_lowercases_email(session_factory, make_user):
    user = make_user()

    with session_factory() as session:
        updated = user_service.update_profile(session, user.id, email="New.Address@InsureConnect.io")

    assert updated.email == "new.address@insureconnect.io"
    with session_factory() as session:
        assert user_service.get_user_by_email(session, "new.address@insureconnect.io").id == user.id


def test_update_profile_keeping_own_email_is_allowed(session_factory, make_user):
    user = make_user(email="same@insureconnect.io")

    with session_factory() as session:
        updated = user_service.update_profile(session, user.id, email="same@insureconnect.io")

    assert updated.email == "same@insureconnect.io"


def test_update_profile_email_taken_by_another_account(session_factory, make_user):
    make_user(email="owner@insureconnect.io")
    user = make_user(name="Keeps Name")

    with session_factory() as session:
        with pytest.raises(ConflictError, match="Email is already taken"):
            user_service.update_profile(session, user.id, name="Changed", email="OWNER@insureconnect.io")

    with session_factory() as session:
        assert session.get(User, user.id).name == "Keeps Name"


@pytest.mark.parametrize("fields", [{"name": "   "}, {"email": "not-an-email"}])
def test_update_profile_validation(session_factory, make_user, fields):
    user = make_user()

    with session_factory() as session:
        with pytest.raises(ValidationError):
            user_service.update_profile(session, user.id, **fields)


def test_update_profile_unknown_user(db):
    with pytest.raises(NotFoundError):
        user_service.update_profile(db, uuid.uuid4(), name="Ghost")


# =============================================================================
# Admin member list
# =============================================================================

def test_list_users_reports_post_counts_newest_first(session_factory, db, make_user, admin):
    first = make_user(tokens=20, name="First")
    second = make_user(tokens=0, name="Second")
    with session_factory() as session:
        post_service.submit_post(session, first.id, "A", "Alpha.", "auto")
        post_service.submit_post(session, first.id, "B", "Beta.", "auto")

    rows, total = user_service.list_users(db)

    assert total == 3
    assert [user.id for user, _ in rows] == [second.id, first.id, admin.id]
    counts = {user.id: count for user, count in rows}
    assert counts == {first.id: 2, second.id: 0, admin.id: 0}


def test_list_users_paginates(db, make_user):
    for i in range(3):
        make_user(name=f"Member {i}")

    rows, total = user_service.list_users(db, page=2, limit=2)

    assert total == 3
    assert len(rows) == 1
