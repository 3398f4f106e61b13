"""
Pocket Bounty - Database Schema
===============================

Schema for the bounty marketplace:
- Bounties with escrowed rewards, applications and completion payouts
- User balances backed by an append-only transaction ledger
- Platform revenue records for every fee the platform keeps
- Card payments (deposits, point purchases) and withdrawals through Stripe
- Social features: friendships, message threads, reviews, activity feed

All timestamps are naive UTC; all money columns are Numeric with 2 decimals.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, String, Numeric, DateTime, Boolean, Text, JSON,
    ForeignKey, UniqueConstraint, Index, CheckConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

from utils.datetime_helpers import get_naive_utc_now


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in development and tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

Money = Numeric(12, 2)


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class BountyStatus(Enum):
    """Bounty lifecycle states - completed and expired are terminal"""
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ApplicationStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class TransactionType(Enum):
    """User-facing ledger entry types"""
    EARNING = "earning"
    SPENDING = "spending"
    REFUND = "refund"
    POINT_PURCHASE = "point_purchase"
    ESCROW_HOLD = "escrow_hold"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RevenueSource(Enum):
    """Where a platform revenue record came from"""
    BOUNTY_POSTING = "bounty_posting"
    BOUNTY_COMPLETION = "bounty_completion"
    DEPOSIT = "deposit"
    EXPIRED_BOUNTY_FEE = "expired_bounty_fee"
    POINT_PURCHASE = "point_purchase"


class ActivityType(Enum):
    """Activity feed entry types"""
    BOUNTY_POSTED = "bounty_posted"
    BOUNTY_APPLIED = "bounty_applied"
    APPLICATION_ACCEPTED = "application_accepted"
    BOUNTY_COMPLETED = "bounty_completed"
    BOUNTY_EXPIRED = "bounty_expired"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_FAILED = "withdrawal_failed"
    POINTS_EARNED = "points_earned"
    POINTS_PURCHASED = "points_purchased"
    REFERRAL_MILESTONE = "referral_milestone"
    FRIEND_ADDED = "friend_added"
    REVIEW_RECEIVED = "review_received"


class PaymentStatus(Enum):
    """Mirrors Stripe PaymentIntent statuses we act on"""
    PENDING = "pending"
    REQUIRES_ACTION = "requires_action"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentType(Enum):
    DEPOSIT = "deposit"
    POINT_PURCHASE = "point_purchase"


class FriendshipStatus(Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class WithdrawalMethod(Enum):
    """Payout methods and their display names"""
    BANK_TRANSFER = "bank_transfer"
    DEBIT_CARD = "debit_card"
    CASH_APP = "cash_app"
    PAYPAL = "paypal"

    @property
    def display_name(self) -> str:
        return {
            "bank_transfer": "bank transfer",
            "debit_card": "instant debit",
            "cash_app": "Cash App",
            "paypal": "PayPal",
        }[self.value]


def _status_check(column: str, enum_cls, name: str) -> CheckConstraint:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({values})", name=name)


# ============================================================================
# USERS
# ============================================================================

class User(Base):
    """Marketplace user - id is the identity provider's subject claim"""
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Profile
    handle: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    skills: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    experience: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Wallet
    balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    lifetime_earned: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Gamification
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("0.00"), nullable=False)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Referral system
    referral_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, unique=True)
    referred_by_id: Mapped[Optional[str]] = mapped_column(String(255), ForeignKey('users.id'), nullable=True)
    referral_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Status flags
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    bounties: Mapped[list["Bounty"]] = relationship(
        "Bounty", foreign_keys="Bounty.author_id", back_populates="author"
    )
    transactions: Mapped[list["Transaction"]] = relationship("Transaction", back_populates="user")

    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_users_balance_positive'),
        CheckConstraint('points >= 0', name='ck_users_points_positive'),
    )

    @property
    def display_name(self) -> str:
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full_name or self.handle or self.email or self.id


# ============================================================================
# BOUNTIES
# ============================================================================

class Bounty(Base):
    """Posted task whose reward is held in escrow until completion or expiry"""
    __tablename__ = 'bounties'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    reward: Mapped[Decimal] = mapped_column(Money, nullable=False)
    tags: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    duration: Mapped[int] = mapped_column(Integer, default=7, nullable=False)  # days
    status: Mapped[str] = mapped_column(String(20), default=BountyStatus.ACTIVE.value, nullable=False)

    author_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False, index=True)
    claimed_by: Mapped[Optional[str]] = mapped_column(String(255), ForeignKey('users.id'), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    expired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    author: Mapped["User"] = relationship("User", foreign_keys=[author_id], back_populates="bounties")
    claimant: Mapped[Optional["User"]] = relationship("User", foreign_keys=[claimed_by])
    applications: Mapped[list["BountyApplication"]] = relationship(
        "BountyApplication", back_populates="bounty", cascade="all, delete-orphan"
    )

    __table_args__ = (
        _status_check('status', BountyStatus, 'ck_bounty_status_valid'),
        CheckConstraint('reward > 0', name='ck_bounty_reward_positive'),
        Index('ix_bounties_status_created', 'status', 'created_at'),
    )


class BountyApplication(Base):
    __tablename__ = 'bounty_applications'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bounty_id: Mapped[int] = mapped_column(Integer, ForeignKey('bounties.id'), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=ApplicationStatus.PENDING.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    bounty: Mapped["Bounty"] = relationship("Bounty", back_populates="applications")
    applicant: Mapped["User"] = relationship("User")

    __table_args__ = (
        UniqueConstraint('bounty_id', 'user_id', name='uq_application_bounty_user'),
        _status_check('status', ApplicationStatus, 'ck_application_status_valid'),
    )


# ============================================================================
# LEDGER
# ============================================================================

class Transaction(Base):
    """Append-only user ledger row; only status may change after insert"""
    __tablename__ = 'transactions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False, index=True)
    bounty_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('bounties.id'), nullable=True)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    fee: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)  # withheld from a payout
    status: Mapped[str] = mapped_column(String(20), default=TransactionStatus.COMPLETED.value, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)  # provider id

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="transactions")

    __table_args__ = (
        _status_check('type', TransactionType, 'ck_transaction_type_valid'),
        _status_check('status', TransactionStatus, 'ck_transaction_status_valid'),
        CheckConstraint('amount >= 0', name='ck_transaction_amount_positive'),
        Index('ix_transactions_user_created', 'user_id', 'created_at'),
    )


class PlatformRevenue(Base):
    """The platform's retained cut of a money movement"""
    __tablename__ = 'platform_revenue'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    bounty_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('bounties.id'), nullable=True)
    transaction_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('transactions.id'), nullable=True)
    payment_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey('payments.id'), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        _status_check('source', RevenueSource, 'ck_revenue_source_valid'),
        CheckConstraint('amount >= 0', name='ck_revenue_amount_positive'),
    )


class Activity(Base):
    """User-facing activity feed entry"""
    __tablename__ = 'activities'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    activity_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        Index('ix_activities_user_created', 'user_id', 'created_at'),
    )


# ============================================================================
# PAYMENTS
# ============================================================================

class PaymentMethod(Base):
    """Saved Stripe card"""
    __tablename__ = 'payment_methods'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False, index=True)
    stripe_payment_method_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(String(30), default="card", nullable=False)
    last4: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    expiry_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expiry_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)


class Payment(Base):
    """Mirror of a Stripe PaymentIntent we created"""
    __tablename__ = 'payments'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False, index=True)
    stripe_payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)  # amount charged
    platform_fee: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)  # amount credited
    status: Mapped[str] = mapped_column(String(30), default=PaymentStatus.PENDING.value, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    # Set once when the payment's value has been applied to the user
    credited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    __table_args__ = (
        _status_check('type', PaymentType, 'ck_payment_type_valid'),
    )


# ============================================================================
# SOCIAL
# ============================================================================

class Friendship(Base):
    __tablename__ = 'friendships'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    requester_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False)
    addressee_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=FriendshipStatus.PENDING.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )

    requester: Mapped["User"] = relationship("User", foreign_keys=[requester_id])
    addressee: Mapped["User"] = relationship("User", foreign_keys=[addressee_id])

    __table_args__ = (
        UniqueConstraint('requester_id', 'addressee_id', name='uq_friendship_pair'),
        CheckConstraint('requester_id <> addressee_id', name='ck_friendship_not_self'),
        _status_check('status', FriendshipStatus, 'ck_friendship_status_valid'),
    )


class MessageThread(Base):
    """Conversation between two users; user1_id < user2_id"""
    __tablename__ = 'message_threads'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user1_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False)
    user2_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False)
    last_message_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="thread", order_by="Message.created_at", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint('user1_id', 'user2_id', name='uq_thread_pair'),
    )

    def other_participant(self, user_id: str) -> str:
        return self.user2_id if self.user1_id == user_id else self.user1_id

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.user1_id, self.user2_id)


class Message(Base):
    __tablename__ = 'messages'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(Integer, ForeignKey('message_threads.id'), nullable=False, index=True)
    sender_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    thread: Mapped["MessageThread"] = relationship("MessageThread", back_populates="messages")


class Review(Base):
    __tablename__ = 'reviews'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bounty_id: Mapped[int] = mapped_column(Integer, ForeignKey('bounties.id'), nullable=False)
    reviewer_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False)
    reviewee_id: Mapped[str] = mapped_column(String(255), ForeignKey('users.id'), nullable=False, index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('bounty_id', 'reviewer_id', name='uq_review_bounty_reviewer'),
        CheckConstraint('rating >= 1 AND rating <= 5', name='ck_review_rating_range'),
    )
