"""
Request schemas for the Pocket Bounty API

Pydantic models validate every JSON body before it reaches a service.
Field names accept the camelCase keys the web client sends.
"""

import re
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import Config

AMOUNT_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")


def parse_amount(value: Union[str, int, float, Decimal], maximum: Decimal) -> Decimal:
    """Positive dollar amount with at most two decimals"""
    text = str(value).strip()
    if not AMOUNT_PATTERN.match(text):
        raise ValueError("Amount must be a number with at most 2 decimal places")
    amount = Decimal(text)
    if amount <= 0:
        raise ValueError("Amount must be greater than 0")
    if amount > maximum:
        raise ValueError(f"Amount must not exceed {maximum}")
    return amount


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


# === Bounties ===

class BountyCreate(CamelModel):
    title: str = Field(..., min_length=5, max_length=255)
    description: str = Field(..., min_length=20, max_length=5000)
    category: str = Field(..., min_length=1, max_length=100)
    reward: Decimal
    tags: List[str] = Field(default_factory=list, max_length=20)
    duration: int = Field(7, ge=1, le=90)

    @field_validator("reward", mode="before")
    @classmethod
    def validate_reward(cls, value):
        return parse_amount(value, Config.MAX_BOUNTY_REWARD)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, value: List[str]) -> List[str]:
        cleaned = [tag.strip() for tag in value if tag and tag.strip()]
        if any(len(tag) > 50 for tag in cleaned):
            raise ValueError("Tags must be at most 50 characters")
        return cleaned


class BountyApply(CamelModel):
    message: Optional[str] = Field(None, max_length=2000)


# === Users ===

class PointsAward(CamelModel):
    points: int = Field(..., gt=0)
    game: Optional[str] = Field(None, max_length=50)


class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=100)
    handle: Optional[str] = Field(None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_]+$")
    bio: Optional[str] = Field(None, max_length=1000)
    skills: Optional[List[str]] = Field(None, max_length=30)
    experience: Optional[str] = Field(None, max_length=2000)


# === Messaging ===

class MessageCreate(CamelModel):
    content: str = Field(..., min_length=1, max_length=1000)
    thread_id: Optional[int] = Field(None, alias="threadId")
    recipient_id: Optional[str] = Field(None, alias="recipientId")


# === Friends ===

class FriendRequestCreate(CamelModel):
    addressee_id: str = Field(..., alias="addresseeId", min_length=1)


class FriendRequestUpdate(CamelModel):
    status: str = Field(..., pattern=r"^(accepted|declined)$")


# === Reviews ===

class ReviewCreate(CamelModel):
    bounty_id: int = Field(..., alias="bountyId")
    reviewee_id: str = Field(..., alias="revieweeId")
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


# === Payments ===

class SavePaymentMethod(CamelModel):
    payment_method_id: str = Field(..., alias="paymentMethodId", min_length=1)


class SetDefaultPaymentMethod(CamelModel):
    payment_method_id: int = Field(..., alias="paymentMethodId")


class DepositRequest(CamelModel):
    amount: Decimal
    payment_method_id: str = Field(..., alias="paymentMethodId", min_length=1)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value):
        return parse_amount(value, Config.MAX_DEPOSIT_AMOUNT)


class ConfirmPaymentRequest(CamelModel):
    payment_intent_id: str = Field(..., alias="paymentIntentId", min_length=1)


class WithdrawRequest(CamelModel):
    amount: Decimal
    method: str = Field("bank_transfer", pattern=r"^(bank_transfer|debit_card|cash_app|paypal)$")

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value):
        return parse_amount(value, Config.MAX_WITHDRAWAL_AMOUNT)


class DevDepositRequest(CamelModel):
    amount: Decimal

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value):
        amount = parse_amount(value, Config.TEST_DEPOSIT_MAX_AMOUNT)
        if amount < 1:
            raise ValueError("Amount must be at least 1")
        return amount


# === Points & referrals ===

class PointsPurchaseRequest(CamelModel):
    package_id: str = Field(..., alias="packageId", min_length=1)


class ReferralSignupRequest(CamelModel):
    referral_code: str = Field(..., alias="referralCode", min_length=4, max_length=20)
