"""In-memory implementation of the storage/ledger collaborator.

Used for local runs and tests. Every balance or status change that the user
can see is announced on the event bus after the change is applied.
"""

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from cashwatch.errors import DomainActionError, InsufficientFundsError
from cashwatch.logging_config import get_logger
from cashwatch.schemas.push import (
    BalanceDelta,
    PromotionApproved,
    PromotionRejected,
    ReferralBonus,
    RewardGranted,
    TaskDeleted,
    TaskRemoved,
    WithdrawalApproved,
    WithdrawalRejected,
    WithdrawalRequested,
)
from cashwatch.services.domain import (
    AppStats,
    PayoutRequest,
    Promotion,
    PromotionDraft,
    Referral,
    TelegramProfile,
    User,
)
from cashwatch.services.event_bus import EventBus
from cashwatch.services.result import Result
from cashwatch.services.validators import to_decimal

logger = get_logger("ledger")

REFERRAL_REWARD = Decimal("0.01")
REFERRAL_ADS_REQUIRED = 10


def format_amount(amount: Decimal) -> str:
    return f"{to_decimal(amount):f}"


class InMemoryLedger:
    def __init__(self, event_bus: Optional[EventBus] = None):
        self.event_bus = event_bus
        self.users: dict[str, User] = {}
        self.referrals: dict[str, Referral] = {}
        self.payouts: dict[str, PayoutRequest] = {}
        self.promotions: dict[str, Promotion] = {}
        self.completions: dict[tuple[str, str], datetime] = {}
        self.last_seen: dict[str, datetime] = {}

    async def _emit(self, user_id: Optional[str], event) -> None:
        if self.event_bus is None:
            return
        if user_id is None:
            await self.event_bus.publish_all(event)
        else:
            await self.event_bus.publish(user_id, event)

    def _new_referral_code(self) -> str:
        existing = {user.referral_code for user in self.users.values()}
        while True:
            code = secrets.token_hex(4).upper()
            if code not in existing:
                return code

    # Users

    async def upsert_user_by_chat_id(self, chat_id: str, profile: TelegramProfile) -> tuple[User, bool]:
        chat_id = str(chat_id)
        now = datetime.now(timezone.utc)
        user = await self.get_user_by_chat_id(chat_id)
        if user:
            user.first_name = profile.first_name or user.first_name
            user.last_name = profile.last_name or user.last_name
            user.username = profile.username or user.username
            self.last_seen[user.id] = now
            return user, False

        user = User(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            referral_code=self._new_referral_code(),
            first_name=profile.first_name,
            last_name=profile.last_name,
            username=profile.username,
            created_at=now,
        )
        self.users[user.id] = user
        self.last_seen[user.id] = now
        logger.info("User created", extra={"context": {"user_id": user.id, "chat_id": chat_id}})
        return user, True

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def get_user_by_chat_id(self, chat_id: str) -> Optional[User]:
        return next((user for user in self.users.values() if user.chat_id == str(chat_id)), None)

    async def get_user_by_referral_code(self, code: str) -> Optional[User]:
        if not code:
            return None
        return next((user for user in self.users.values() if user.referral_code == code), None)

    async def get_all_users(self) -> list[User]:
        return list(self.users.values())

    # Referrals

    async def create_referral(self, referrer_id: str, referee_id: str) -> Referral:
        if referrer_id == referee_id:
            raise DomainActionError("Self-referral is not allowed")
        if referrer_id not in self.users or referee_id not in self.users:
            raise DomainActionError("Unknown user in referral")

        existing = next((ref for ref in self.referrals.values() if ref.referee_id == referee_id), None)
        if existing:
            return existing

        referral = Referral(
            id=str(uuid.uuid4()), referrer_id=referrer_id, referee_id=referee_id, reward_amount=REFERRAL_REWARD
        )
        self.referrals[referral.id] = referral
        return referral

    async def count_referrals(self, user_id: str) -> int:
        return sum(1 for ref in self.referrals.values() if ref.referrer_id == user_id)

    async def get_referral_earnings(self, user_id: str) -> Decimal:
        return sum(
            (ref.reward_amount for ref in self.referrals.values() if ref.referrer_id == user_id and ref.status == "paid"),
            Decimal("0"),
        )

    # Balances

    async def grant_reward(self, user_id: str, amount: Decimal) -> Result[Decimal]:
        """Credit an ad reward; pays the referrer once the referee reaches the ads threshold."""
        user = self.users.get(user_id)
        if not user:
            return Result.failure("User not found", "not_found")
        amount = to_decimal(amount)
        user.balance += amount
        user.total_earned += amount
        user.ads_watched += 1
        await self._emit(user.id, RewardGranted(amount=format_amount(amount)))

        referral = next(
            (ref for ref in self.referrals.values() if ref.referee_id == user.id and ref.status == "pending"),
            None,
        )
        if referral and user.ads_watched >= REFERRAL_ADS_REQUIRED:
            referrer = self.users.get(referral.referrer_id)
            if referrer:
                referral.status = "paid"
                referrer.balance += referral.reward_amount
                referrer.total_earned += referral.reward_amount
                await self._emit(referrer.id, ReferralBonus(amount=format_amount(referral.reward_amount)))
        return Result.success(user.balance)

    async def credit_funding_balance(self, user_id: str, amount: Decimal) -> Result[Decimal]:
        user = self.users.get(user_id)
        if not user:
            return Result.failure("User not found", "not_found")
        user.funding_balance += to_decimal(amount)
        logger.info("Funding balance credited", extra={"context": {"user_id": user_id, "amount": str(amount)}})
        return Result.success(user.funding_balance)

    async def deduct_funding_balance(self, user_id: str, amount: Decimal) -> None:
        user = self.users.get(user_id)
        if not user:
            raise DomainActionError("User not found")
        amount = to_decimal(amount)
        if user.funding_balance < amount:
            raise InsufficientFundsError(
                "Insufficient funding balance", available=user.funding_balance, required=amount
            )
        user.funding_balance -= amount

    # Payouts

    async def create_payout_request(
        self, user_id: str, amount: Decimal, method_id: str, details: str
    ) -> Result[PayoutRequest]:
        user = self.users.get(user_id)
        if not user:
            return Result.failure("User not found", "not_found")

        amount = to_decimal(amount)
        if amount <= 0:
            return Result.failure("Withdrawal amount must be positive", "invalid_amount")
        if user.balance < amount:
            return Result.failure("Insufficient balance for this withdrawal", "insufficient_funds")
        if any(p.user_id == user_id and p.status == "pending" for p in self.payouts.values()):
            return Result.failure("You already have a pending withdrawal request", "duplicate_payout")

        payout = PayoutRequest(
            id=str(uuid.uuid4()),
            user_id=user_id,
            amount=amount,
            method_id=method_id,
            details=details,
        )
        user.balance -= amount
        self.payouts[payout.id] = payout
        logger.info(
            "Payout requested",
            extra={"context": {"payout_id": payout.id, "user_id": user_id, "amount": str(amount)}},
        )
        await self._emit(user_id, WithdrawalRequested(amount=format_amount(amount)))
        return Result.success(payout)

    async def approve_payout(self, payout_id: str) -> Result[PayoutRequest]:
        payout = self.payouts.get(payout_id)
        if not payout:
            return Result.failure("Payout not found", "not_found")
        if payout.status != "pending":
            return Result.failure(f"Payout status is {payout.status}", "invalid_status")
        payout.status = "approved"
        await self._emit(payout.user_id, WithdrawalApproved(amount=format_amount(payout.amount)))
        return Result.success(payout)

    async def reject_payout(self, payout_id: str) -> Result[PayoutRequest]:
        payout = self.payouts.get(payout_id)
        if not payout:
            return Result.failure("Payout not found", "not_found")
        if payout.status != "pending":
            return Result.failure(f"Payout status is {payout.status}", "invalid_status")
        payout.status = "rejected"
        user = self.users.get(payout.user_id)
        if user:
            user.balance += payout.amount
        await self._emit(payout.user_id, WithdrawalRejected(amount=format_amount(payout.amount)))
        return Result.success(payout)

    # Promotions

    async def create_promotion(self, draft: PromotionDraft) -> Promotion:
        if draft.creator_id not in self.users:
            raise DomainActionError("Promotion creator not found")
        promotion = Promotion(
            id=str(uuid.uuid4()),
            creator_id=draft.creator_id,
            type=draft.type,
            title=draft.title,
            description=draft.description,
            url=draft.url,
            reward_amount=to_decimal(draft.reward_amount),
            ad_cost=to_decimal(draft.ad_cost),
            total_slots=draft.total_slots,
            is_active=draft.is_active,
        )
        self.promotions[promotion.id] = promotion
        return promotion

    async def get_promotion(self, promotion_id: str) -> Optional[Promotion]:
        return self.promotions.get(promotion_id)

    async def approve_promotion(self, promotion_id: str) -> Result[Promotion]:
        promotion = self.promotions.get(promotion_id)
        if not promotion:
            return Result.failure("Promotion not found", "not_found")
        promotion.status = "approved"
        promotion.is_active = True
        await self._emit(promotion.creator_id, PromotionApproved(title=promotion.title))
        return Result.success(promotion)

    async def reject_promotion(self, promotion_id: str, refund: bool = True) -> Result[Promotion]:
        promotion = self.promotions.get(promotion_id)
        if not promotion:
            return Result.failure("Promotion not found", "not_found")
        promotion.status = "rejected"
        promotion.is_active = False
        creator = self.users.get(promotion.creator_id)
        refunded = bool(refund and creator)
        if refunded:
            creator.funding_balance += promotion.ad_cost
        await self._emit(promotion.creator_id, PromotionRejected(title=promotion.title, refunded=refunded))
        await self._emit(None, TaskRemoved(promotion_id=promotion.id))
        return Result.success(promotion)

    async def delete_task(self, promotion_id: str, refund: bool = False) -> Result[Promotion]:
        promotion = self.promotions.pop(promotion_id, None)
        if not promotion:
            return Result.failure("Promotion not found", "not_found")
        promotion.status = "deleted"
        promotion.is_active = False
        creator = self.users.get(promotion.creator_id)
        refund_amount = None
        if refund and creator:
            creator.funding_balance += promotion.ad_cost
            refund_amount = format_amount(promotion.ad_cost)
        await self._emit(
            promotion.creator_id,
            TaskDeleted(title=promotion.title, refunded=refund_amount is not None, refund_amount=refund_amount),
        )
        await self._emit(None, TaskRemoved(promotion_id=promotion.id))
        return Result.success(promotion)

    async def has_completed_task(self, promotion_id: str, user_id: str) -> bool:
        return (promotion_id, user_id) in self.completions

    async def complete_task(self, promotion_id: str, user_id: str, reward_amount: Decimal) -> Result[Decimal]:
        promotion = self.promotions.get(promotion_id)
        user = self.users.get(user_id)
        if not promotion or not user:
            return Result.failure("Task not found", "not_found")
        if not promotion.is_claimable:
            return Result.failure("This task has expired", "expired")
        if (promotion_id, user_id) in self.completions:
            return Result.failure("You have already completed this task", "already_completed")

        reward = to_decimal(reward_amount)
        self.completions[(promotion_id, user_id)] = datetime.now(timezone.utc)
        promotion.completed_count += 1
        if not promotion.has_free_slots:
            promotion.is_active = False
        user.balance += reward
        user.total_earned += reward
        await self._emit(user_id, BalanceDelta(amount=format_amount(reward)))
        if not promotion.is_active:
            await self._emit(None, TaskRemoved(promotion_id=promotion.id))
        return Result.success(reward)

    # Stats

    async def get_app_stats(self) -> AppStats:
        now = datetime.now(timezone.utc)
        day_ago = now - timedelta(hours=24)
        return AppStats(
            total_users=len(self.users),
            active_users_today=sum(1 for seen in self.last_seen.values() if seen.date() == now.date()),
            total_invites=len(self.referrals),
            total_earnings=sum((u.total_earned for u in self.users.values()), Decimal("0")),
            total_referral_earnings=sum(
                (r.reward_amount for r in self.referrals.values() if r.status == "paid"), Decimal("0")
            ),
            total_payouts=sum(
                (p.amount for p in self.payouts.values() if p.status == "approved"), Decimal("0")
            ),
            new_users_last_24h=sum(1 for u in self.users.values() if u.created_at >= day_ago),
        )
