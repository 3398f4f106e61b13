"""
Points tests
Package purchases, mini-game awards and referral milestones
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from models import Activity, ActivityType, Payment, PlatformRevenue, RevenueSource, User
from services.points_service import POINT_PACKAGES, points_service
from utils.exception_handler import (
    ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError,
)


def reload_user(session, user_id) -> User:
    session.expire_all()
    return session.get(User, user_id)


def succeeded_intent(user_id, package_id="popular", points="250", status="succeeded"):
    return SimpleNamespace(
        id="pi_points",
        status=status,
        amount=499,
        metadata={"userId": user_id, "packageId": package_id, "points": points, "type": "point_purchase"},
    )


class TestPackages:

    def test_catalogue_prices_are_strings(self):
        packages = points_service.list_packages()
        assert len(packages) == len(POINT_PACKAGES)
        popular = next(p for p in packages if p["id"] == "popular")
        assert popular == {"id": "popular", "name": "Popular Pack", "points": 250, "price": "4.99", "popular": True}

    def test_unknown_package_rejected(self):
        with pytest.raises(ValidationError, match="Invalid package"):
            points_service.get_package("gold")

    def test_create_purchase_charges_package_price(self, db_session, make_user, stripe_mock):
        make_user("buyer")
        stripe_mock.create_payment_intent.return_value = SimpleNamespace(
            id="pi_points", status="requires_payment_method", client_secret="pi_points_secret"
        )

        result = points_service.create_purchase(db_session, "buyer", "starter", stripe_mock)

        assert result["clientSecret"] == "pi_points_secret"
        assert result["package"]["points"] == 50
        args, kwargs = stripe_mock.create_payment_intent.call_args
        assert args[0] == Decimal("0.99")
        assert kwargs["metadata"]["packageId"] == "starter"


class TestConfirmPurchase:

    def test_points_awarded_once_per_intent(self, db_session, make_user, stripe_mock):
        make_user("buyer", points=10)
        stripe_mock.retrieve_payment_intent.return_value = succeeded_intent("buyer")

        first = points_service.confirm_purchase(db_session, "buyer", "pi_points", stripe_mock)
        second = points_service.confirm_purchase(db_session, "buyer", "pi_points", stripe_mock)

        assert first == {"success": True, "alreadyProcessed": False, "pointsAwarded": 250, "newPointsTotal": 260}
        assert second["alreadyProcessed"] is True
        assert second["pointsAwarded"] == 0
        assert reload_user(db_session, "buyer").points == 260
        stripe_mock.retrieve_payment_intent.assert_called_once()

        revenue = db_session.execute(select(PlatformRevenue)).scalar_one()
        assert revenue.amount == Decimal("4.99")
        assert revenue.source == RevenueSource.POINT_PURCHASE.value
        assert db_session.execute(select(Payment)).scalar_one().credited_at is not None

    def test_unfinished_payment_is_not_awarded(self, db_session, make_user, stripe_mock):
        make_user("buyer")
        stripe_mock.retrieve_payment_intent.return_value = succeeded_intent("buyer", status="processing")

        with pytest.raises(InvalidStateError):
            points_service.confirm_purchase(db_session, "buyer", "pi_points", stripe_mock)
        assert reload_user(db_session, "buyer").points == 0

    def test_intent_of_another_user_is_refused(self, db_session, make_user, stripe_mock):
        make_user("buyer")
        make_user("thief")
        stripe_mock.retrieve_payment_intent.return_value = succeeded_intent("buyer")

        with pytest.raises(PermissionDeniedError):
            points_service.confirm_purchase(db_session, "thief", "pi_points", stripe_mock)

        points_service.confirm_purchase(db_session, "buyer", "pi_points", stripe_mock)
        with pytest.raises(PermissionDeniedError):
            points_service.confirm_purchase(db_session, "thief", "pi_points", stripe_mock)

    def test_deposit_intent_is_not_a_point_purchase(self, db_session, make_user, stripe_mock):
        make_user("buyer")
        intent = succeeded_intent("buyer")
        intent.metadata["type"] = "deposit"
        stripe_mock.retrieve_payment_intent.return_value = intent

        with pytest.raises(ValidationError):
            points_service.confirm_purchase(db_session, "buyer", "pi_points", stripe_mock)


class TestGamePoints:

    def test_award_records_activity(self, db_session, make_user):
        make_user("gamer", points=3)

        result = points_service.award_game_points(db_session, "gamer", 7, game="memory")

        assert result == {"success": True, "points": 10}
        activity = db_session.execute(select(Activity)).scalar_one()
        assert activity.type == ActivityType.POINTS_EARNED.value
        assert activity.description == "Earned 7 points playing memory"

    @pytest.mark.parametrize("points", [0, -5, 101])
    def test_out_of_range_awards_rejected(self, db_session, make_user, points):
        make_user("gamer")
        with pytest.raises(ValidationError):
            points_service.award_game_points(db_session, "gamer", points)
        assert reload_user(db_session, "gamer").points == 0

    def test_award_does_not_touch_lifetime_earned(self, db_session, make_user):
        make_user("gamer")
        points_service.award_game_points(db_session, "gamer", 100)
        assert reload_user(db_session, "gamer").lifetime_earned == Decimal("0.00")


class TestReferrals:

    def test_code_is_stable(self, db_session, make_user):
        make_user("referrer")
        code = points_service.get_or_create_referral_code(db_session, "referrer")
        assert len(code) == 8
        assert code.isalnum() and code.upper() == code
        assert points_service.get_or_create_referral_code(db_session, "referrer") == code

    def test_first_referral_pays_milestone(self, db_session, make_user):
        make_user("referrer")
        make_user("newbie")
        code = points_service.get_or_create_referral_code(db_session, "referrer")

        result = points_service.apply_referral(db_session, "newbie", code.lower())

        assert result == {"success": True, "referrerId": "referrer", "milestonePointsAwarded": 10}
        referrer = reload_user(db_session, "referrer")
        assert referrer.referral_count == 1
        assert referrer.points == 10
        assert reload_user(db_session, "newbie").referred_by_id == "referrer"

    def test_points_only_at_milestones(self, db_session, make_user):
        make_user("referrer")
        code = points_service.get_or_create_referral_code(db_session, "referrer")

        awarded = []
        for i in range(5):
            make_user(f"friend{i}")
            awarded.append(points_service.apply_referral(db_session, f"friend{i}", code)["milestonePointsAwarded"])

        assert awarded == [10, 0, 0, 0, 50]
        assert reload_user(db_session, "referrer").points == 60

    def test_stats_show_next_milestone(self, db_session, make_user):
        make_user("referrer")
        make_user("newbie")
        code = points_service.get_or_create_referral_code(db_session, "referrer")
        points_service.apply_referral(db_session, "newbie", code)

        stats = points_service.referral_stats(db_session, "referrer")

        assert stats["referralCode"] == code
        assert stats["shareUrl"].endswith(f"/signup?ref={code}")
        assert stats["referralCount"] == 1
        assert [r["id"] for r in stats["referrals"]] == ["newbie"]
        assert stats["milestones"][0]["reached"] is True
        assert stats["nextMilestone"] == {"referrals": 5, "points": 50, "remaining": 4}

    def test_own_code_rejected(self, db_session, make_user):
        make_user("referrer")
        code = points_service.get_or_create_referral_code(db_session, "referrer")
        with pytest.raises(ValidationError):
            points_service.apply_referral(db_session, "referrer", code)

    def test_code_applies_only_once(self, db_session, make_user):
        make_user("referrer")
        make_user("newbie")
        code = points_service.get_or_create_referral_code(db_session, "referrer")
        points_service.apply_referral(db_session, "newbie", code)

        with pytest.raises(ConflictError):
            points_service.apply_referral(db_session, "newbie", code)
        assert reload_user(db_session, "referrer").referral_count == 1

    def test_unknown_code(self, db_session, make_user):
        make_user("newbie")
        with pytest.raises(NotFoundError, match="Invalid referral code"):
            points_service.apply_referral(db_session, "newbie", "NOPE1234")
