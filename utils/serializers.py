"""JSON shapes returned by the API (camelCase keys, money as 2-decimal strings)"""

from typing import Any, Dict, Optional

from models import (
    Activity, Bounty, BountyApplication, Friendship, Message, MessageThread,
    Payment, PaymentMethod, Review, Transaction, User,
)
from utils.datetime_helpers import isoformat_or_none
from utils.decimal_precision import MonetaryDecimal


def money(value) -> Optional[str]:
    if value is None:
        return None
    return MonetaryDecimal.format_usd(value)


def public_user(user: Optional[User]) -> Optional[Dict[str, Any]]:
    """Profile fields safe to show to other users"""
    if user is None:
        return None
    return {
        "id": user.id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "handle": user.handle,
        "profileImageUrl": user.profile_image_url,
        "bio": user.bio,
        "skills": user.skills or [],
        "rating": f"{user.rating or 0:.2f}",
        "reviewCount": user.review_count,
        "level": user.level,
        "isOnline": user.is_online,
    }


def private_user(user: User) -> Dict[str, Any]:
    data = public_user(user)
    data.update({
        "email": user.email,
        "experience": user.experience,
        "balance": money(user.balance),
        "lifetimeEarned": money(user.lifetime_earned),
        "points": user.points,
        "referralCode": user.referral_code,
        "referralCount": user.referral_count,
        "hasStripeCustomer": bool(user.stripe_customer_id),
        "isAdmin": user.is_admin,
        "createdAt": isoformat_or_none(user.created_at),
    })
    return data


def bounty_dict(bounty: Bounty, include_author: bool = True) -> Dict[str, Any]:
    data = {
        "id": bounty.id,
        "title": bounty.title,
        "description": bounty.description,
        "category": bounty.category,
        "reward": money(bounty.reward),
        "tags": bounty.tags or [],
        "duration": bounty.duration,
        "status": bounty.status,
        "authorId": bounty.author_id,
        "claimedBy": bounty.claimed_by,
        "createdAt": isoformat_or_none(bounty.created_at),
        "completedAt": isoformat_or_none(bounty.completed_at),
        "expiredAt": isoformat_or_none(bounty.expired_at),
    }
    if include_author:
        data["author"] = public_user(bounty.author)
    return data


def application_dict(application: BountyApplication) -> Dict[str, Any]:
    return {
        "id": application.id,
        "bountyId": application.bounty_id,
        "userId": application.user_id,
        "message": application.message,
        "status": application.status,
        "createdAt": isoformat_or_none(application.created_at),
        "applicant": public_user(application.applicant),
    }


def transaction_dict(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "userId": transaction.user_id,
        "bountyId": transaction.bounty_id,
        "type": transaction.type,
        "amount": money(transaction.amount),
        "status": transaction.status,
        "description": transaction.description,
        "createdAt": isoformat_or_none(transaction.created_at),
    }


def activity_dict(activity: Activity) -> Dict[str, Any]:
    return {
        "id": activity.id,
        "type": activity.type,
        "description": activity.description,
        "metadata": activity.activity_metadata or {},
        "createdAt": isoformat_or_none(activity.created_at),
    }


def payment_method_dict(method: PaymentMethod) -> Dict[str, Any]:
    return {
        "id": method.id,
        "stripePaymentMethodId": method.stripe_payment_method_id,
        "type": method.type,
        "last4": method.last4,
        "brand": method.brand,
        "expiryMonth": method.expiry_month,
        "expiryYear": method.expiry_year,
        "isDefault": method.is_default,
        "createdAt": isoformat_or_none(method.created_at),
    }


def payment_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "stripePaymentIntentId": payment.stripe_payment_intent_id,
        "amount": money(payment.amount),
        "platformFee": money(payment.platform_fee),
        "netAmount": money(payment.net_amount),
        "status": payment.status,
        "type": payment.type,
        "description": payment.description,
        "createdAt": isoformat_or_none(payment.created_at),
    }


def message_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "threadId": message.thread_id,
        "senderId": message.sender_id,
        "content": message.content,
        "readAt": isoformat_or_none(message.read_at),
        "createdAt": isoformat_or_none(message.created_at),
    }


def thread_dict(thread: MessageThread, other_user: Optional[User], last_message: Optional[Message],
                unread_count: int = 0) -> Dict[str, Any]:
    return {
        "id": thread.id,
        "otherUser": public_user(other_user),
        "lastMessage": message_dict(last_message) if last_message else None,
        "lastMessageAt": isoformat_or_none(thread.last_message_at),
        "unreadCount": unread_count,
    }


def friendship_dict(friendship: Friendship, viewer_id: str) -> Dict[str, Any]:
    other = friendship.addressee if friendship.requester_id == viewer_id else friendship.requester
    return {
        "id": friendship.id,
        "status": friendship.status,
        "requesterId": friendship.requester_id,
        "addresseeId": friendship.addressee_id,
        "user": public_user(other),
        "createdAt": isoformat_or_none(friendship.created_at),
    }


def review_dict(review: Review) -> Dict[str, Any]:
    return {
        "id": review.id,
        "bountyId": review.bounty_id,
        "reviewerId": review.reviewer_id,
        "revieweeId": review.reviewee_id,
        "rating": review.rating,
        "comment": review.comment,
        "createdAt": isoformat_or_none(review.created_at),
    }
