"""
Bounty lifecycle tests
Escrowed posting, applications, claiming and split-payout completion
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from models import (
    Activity, ActivityType, ApplicationStatus, Bounty, BountyStatus, PlatformRevenue,
    RevenueSource, Transaction, TransactionType, User,
)
from schemas import BountyCreate
from services.bounty_service import bounty_service
from utils.exception_handler import (
    ConflictError, InsufficientBalanceError, InsufficientPointsError, InvalidStateError,
    PermissionDeniedError, ValidationError,
)


def bounty_data(reward="100.00", **overrides) -> BountyCreate:
    fields = {
        "title": "Design a logo",
        "description": "Need a clean vector logo for a small coffee shop.",
        "category": "design",
        "reward": reward,
        "tags": ["logo", "vector"],
        "duration": 5,
    }
    fields.update(overrides)
    return BountyCreate(**fields)


def reload_user(session, user_id) -> User:
    session.expire_all()
    return session.get(User, user_id)


@pytest.fixture
def author(make_user):
    return make_user("author", balance="150.00", points=10)


@pytest.fixture
def worker(make_user):
    return make_user("worker")


@pytest.fixture
def claimed_bounty(db_session, author, worker):
    posted = bounty_service.post_bounty(db_session, author.id, bounty_data(reward="40.00"))
    bounty_id = posted["bounty"]["id"]
    application = bounty_service.apply(db_session, bounty_id, worker.id, "I can do this")
    bounty_service.accept_application(db_session, bounty_id, application["id"], author.id)
    return bounty_id


class TestPostBounty:

    def test_post_holds_reward_in_escrow(self, db_session, author):
        result = bounty_service.post_bounty(db_session, author.id, bounty_data())

        assert result["totalCost"] == "100.00"
        assert result["pointsSpent"] == 5
        assert result["escrow"] == {
            "amount": "100.00",
            "expiresInDays": 3,
            "refundIfExpired": "95.00",
            "feeIfExpired": "5.00",
        }
        assert result["bounty"]["status"] == BountyStatus.ACTIVE.value

        user = reload_user(db_session, author.id)
        assert user.balance == Decimal("50.00")
        assert user.points == 5

        hold = db_session.execute(
            select(Transaction).where(Transaction.type == TransactionType.ESCROW_HOLD.value)
        ).scalar_one()
        assert hold.amount == Decimal("100.00")
        assert hold.bounty_id == result["bounty"]["id"]
        assert "held in escrow" in hold.description

        activity = db_session.execute(select(Activity)).scalar_one()
        assert activity.type == ActivityType.BOUNTY_POSTED.value

    def test_insufficient_balance_names_required_amount(self, db_session, make_user):
        poor = make_user("poor", balance="20.00", points=10)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            bounty_service.post_bounty(db_session, poor.id, bounty_data(reward="25.00"))

        assert "Need $25.00" in exc_info.value.message
        assert exc_info.value.extra["required"] == "25.00"
        user = reload_user(db_session, poor.id)
        assert user.balance == Decimal("20.00"), "Failed posting must not touch the balance"
        assert user.points == 10
        assert db_session.execute(select(Bounty)).first() is None
        assert db_session.execute(select(Transaction)).first() is None

    def test_insufficient_points_rolls_back_debit(self, db_session, make_user):
        no_points = make_user("nopoints", balance="100.00", points=4)

        with pytest.raises(InsufficientPointsError):
            bounty_service.post_bounty(db_session, no_points.id, bounty_data(reward="10.00"))

        user = reload_user(db_session, no_points.id)
        assert user.balance == Decimal("100.00")
        assert user.points == 4
        assert db_session.execute(select(Bounty)).first() is None

    def test_exact_balance_is_enough(self, db_session, make_user):
        exact = make_user("exact", balance="25.00", points=5)
        bounty_service.post_bounty(db_session, exact.id, bounty_data(reward="25.00"))
        user = reload_user(db_session, exact.id)
        assert user.balance == Decimal("0.00")
        assert user.points == 0


class TestApplications:

    def test_cannot_apply_to_own_bounty(self, db_session, author):
        bounty_id = bounty_service.post_bounty(db_session, author.id, bounty_data())["bounty"]["id"]
        with pytest.raises(ValidationError):
            bounty_service.apply(db_session, bounty_id, author.id)

    def test_duplicate_application_conflicts(self, db_session, author, worker):
        bounty_id = bounty_service.post_bounty(db_session, author.id, bounty_data())["bounty"]["id"]
        bounty_service.apply(db_session, bounty_id, worker.id)
        with pytest.raises(ConflictError):
            bounty_service.apply(db_session, bounty_id, worker.id)

    def test_only_author_lists_applications(self, db_session, author, worker):
        bounty_id = bounty_service.post_bounty(db_session, author.id, bounty_data())["bounty"]["id"]
        bounty_service.apply(db_session, bounty_id, worker.id, "Portfolio attached")

        applications = bounty_service.list_applications(db_session, bounty_id, author.id)
        assert [a["userId"] for a in applications] == [worker.id]
        with pytest.raises(PermissionDeniedError):
            bounty_service.list_applications(db_session, bounty_id, worker.id)

    def test_accept_rejects_other_pending_applications(self, db_session, author, worker, make_user):
        rival = make_user("rival")
        bounty_id = bounty_service.post_bounty(db_session, author.id, bounty_data())["bounty"]["id"]
        chosen = bounty_service.apply(db_session, bounty_id, worker.id)
        bounty_service.apply(db_session, bounty_id, rival.id)

        result = bounty_service.accept_application(db_session, bounty_id, chosen["id"], author.id)

        assert result["claimedBy"] == worker.id
        db_session.expire_all()
        statuses = {
            a["userId"]: a["status"] for a in bounty_service.list_applications(db_session, bounty_id, author.id)
        }
        assert statuses == {worker.id: ApplicationStatus.ACCEPTED.value, rival.id: ApplicationStatus.REJECTED.value}

    def test_claimed_bounty_stops_accepting_applications(self, db_session, claimed_bounty, make_user):
        late = make_user("late")
        with pytest.raises(InvalidStateError):
            bounty_service.apply(db_session, claimed_bounty, late.id)


class TestCompleteBounty:

    def test_completion_splits_reward(self, db_session, claimed_bounty, author, worker):
        result = bounty_service.complete_bounty(db_session, claimed_bounty, author.id)

        assert result == {
            "success": True,
            "workerEarned": "38.00",
            "platformFee": "2.00",
            "originalReward": "40.00",
        }
        paid = reload_user(db_session, worker.id)
        assert paid.balance == Decimal("38.00")
        assert paid.lifetime_earned == Decimal("38.00")

        revenue = db_session.execute(select(PlatformRevenue)).scalars().all()
        assert len(revenue) == 1
        assert revenue[0].amount == Decimal("2.00")
        assert revenue[0].source == RevenueSource.BOUNTY_COMPLETION.value

        bounty = db_session.get(Bounty, claimed_bounty)
        assert bounty.status == BountyStatus.COMPLETED.value
        assert bounty.completed_at is not None

    def test_second_completion_is_rejected(self, db_session, claimed_bounty, author, worker):
        bounty_service.complete_bounty(db_session, claimed_bounty, author.id)

        with pytest.raises(InvalidStateError, match="already completed"):
            bounty_service.complete_bounty(db_session, claimed_bounty, author.id)

        assert reload_user(db_session, worker.id).balance == Decimal("38.00")
        assert len(db_session.execute(select(PlatformRevenue)).scalars().all()) == 1

    def test_only_author_can_complete(self, db_session, claimed_bounty, worker):
        with pytest.raises(PermissionDeniedError):
            bounty_service.complete_bounty(db_session, claimed_bounty, worker.id)

    def test_unclaimed_bounty_cannot_complete(self, db_session, author):
        bounty_id = bounty_service.post_bounty(db_session, author.id, bounty_data())["bounty"]["id"]
        with pytest.raises(InvalidStateError, match="must be claimed"):
            bounty_service.complete_bounty(db_session, bounty_id, author.id)

    def test_user_bounties_include_claimed(self, db_session, claimed_bounty, worker):
        bounties = bounty_service.list_user_bounties(db_session, worker.id)
        assert [b["id"] for b in bounties] == [claimed_bounty]
