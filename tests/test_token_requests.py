"""Token top-up requests resolved exactly once by an admin."""
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from sqlalchemy import select

from insureconnect.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from insureconnect.db.enums import TokenRequestStatus, TokenTransactionType
from insureconnect.db.models import Notification, TokenTransaction
from insureconnect.services import token_request_service, token_service


def _create(session_factory, user, amount=500, price="50.00", description=None):
    with session_factory() as session:
        return token_request_service.create_request(
            session, user.id, amount, Decimal(price), description
        )


def test_create_request_defaults_description(session_factory, make_user):
    user = make_user(tokens=0)

    request = _create(session_factory, user)

    assert request.status == TokenRequestStatus.PENDING.value
    assert request.description == "Request for 500 tokens"


@pytest.mark.parametrize("amount,price", [(0, "10"), (-5, "10"), (10, "0"), (10, "-1")])
def test_create_request_validates_amount_and_price(session_factory, make_user, amount, price):
    user = make_user(tokens=0)

    with pytest.raises(ValidationError):
        _create(session_factory, user, amount=amount, price=price)


def test_approve_credits_exactly_once(session_factory, db, make_user, admin):
    user = make_user(tokens=0)
    request = _create(session_factory, user)

    with session_factory() as session:
        approved = token_request_service.approve_request(session, request.id, admin.id)
    assert approved.status == TokenRequestStatus.APPROVED.value
    assert approved.reviewed_by_id == admin.id

    with session_factory() as session:
        with pytest.raises(InvalidStateError):
            token_request_service.approve_request(session, request.id, admin.id)
        with pytest.raises(InvalidStateError):
            token_request_service.reject_request(session, request.id, admin.id)

    assert token_service.get_balance(db, user.id) == 500
    purchases = db.execute(
        select(TokenTransaction).where(
            TokenTransaction.user_id == user.id,
            TokenTransaction.type == TokenTransactionType.PURCHASE.value,
        )
    ).scalars().all()
    assert [p.amount for p in purchases] == [500]
    titles = db.execute(
        select(Notification.title).where(Notification.user_id == user.id)
    ).scalars().all()
    assert titles == ["Tokens Added"]


def test_reject_moves_no_tokens(session_factory, db, make_user, admin):
    user = make_user(tokens=0)
    request = _create(session_factory, user)

    with session_factory() as session:
        rejected = token_request_service.reject_request(
            session, request.id, admin.id, reason="payment not received"
        )

    assert rejected.status == TokenRequestStatus.REJECTED.value
    assert rejected.rejection_reason == "payment not received"
    assert token_service.get_balance(db, user.id) == 0
    note = db.execute(select(Notification).where(Notification.user_id == user.id)).scalar_one()
    assert note.title == "Token Request Rejected"
    assert "payment not received" in note.message


def test_concurrent_approvals_credit_once(session_factory, make_user, admin):
    user = make_user(tokens=0)
    request = _create(session_factory, user, amount=200)

    def attempt(_):
        with session_factory() as session:
            try:
                token_request_service.approve_request(session, request.id, admin.id)
                return True
            except InvalidStateError:
                return False

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(attempt, range(4)))

    assert outcomes.count(True) == 1
    with session_factory() as session:
        assert token_service.get_balance(session, user.id) == 200
        assert token_service.verify_ledger(session, user.id)


def test_resolve_missing_request_is_not_found(db, admin):
    import uuid

    with pytest.raises(NotFoundError):
        token_request_service.approve_request(db, uuid.uuid4(), admin.id)


def test_pending_queue_oldest_first(session_factory, db, make_user, admin):
    user = make_user(tokens=0)
    first = _create(session_factory, user, amount=100)
    second = _create(session_factory, user, amount=200)
    third = _create(session_factory, user, amount=300)
    with session_factory() as session:
        token_request_service.approve_request(session, second.id, admin.id)

    pending, total = token_request_service.list_pending_requests(db)
    assert total == 2
    assert [r.id for r in pending] == [first.id, third.id]

    mine, my_total = token_request_service.list_user_requests(db, user.id)
    assert my_total == 3
    assert [r.amount for r in mine] == [300, 200, 100]
