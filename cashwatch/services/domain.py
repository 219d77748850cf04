"""Records and calls owned by the storage/ledger collaborator.

The conversation engine and the push gateway only depend on the
``DomainActions`` protocol; ``cashwatch.services.ledger`` ships an in-memory
implementation of it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

from cashwatch.services.result import Result


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TelegramProfile:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None


@dataclass
class User:
    id: str
    chat_id: Optional[str]
    referral_code: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    balance: Decimal = Decimal("0")
    funding_balance: Decimal = Decimal("0")
    total_earned: Decimal = Decimal("0")
    ads_watched: int = 0
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def display_name(self) -> str:
        return self.first_name or self.username or "User"


@dataclass
class Referral:
    id: str
    referrer_id: str
    referee_id: str
    status: str = "pending"
    reward_amount: Decimal = Decimal("0.01")
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class PromotionDraft:
    creator_id: str
    type: str
    title: str
    description: str
    url: str
    reward_amount: Decimal
    ad_cost: Decimal
    total_slots: int
    is_active: bool = True


@dataclass
class Promotion:
    id: str
    creator_id: str
    type: str
    title: str
    description: str
    url: str
    reward_amount: Decimal
    ad_cost: Decimal
    total_slots: int
    is_active: bool = True
    status: str = "pending"
    completed_count: int = 0
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def has_free_slots(self) -> bool:
        return self.completed_count < self.total_slots

    @property
    def is_claimable(self) -> bool:
        return self.is_active and self.has_free_slots


@dataclass
class PayoutRequest:
    id: str
    user_id: str
    amount: Decimal
    method_id: str
    details: str
    status: str = "pending"
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class AppStats:
    total_users: int
    active_users_today: int
    total_invites: int
    total_earnings: Decimal
    total_referral_earnings: Decimal
    total_payouts: Decimal
    new_users_last_24h: int


class DomainActions(Protocol):
    async def upsert_user_by_chat_id(self, chat_id: str, profile: TelegramProfile) -> tuple[User, bool]: ...

    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def get_user_by_chat_id(self, chat_id: str) -> Optional[User]: ...

    async def get_user_by_referral_code(self, code: str) -> Optional[User]: ...

    async def create_referral(self, referrer_id: str, referee_id: str) -> Referral: ...

    async def count_referrals(self, user_id: str) -> int: ...

    async def get_referral_earnings(self, user_id: str) -> Decimal: ...

    async def create_payout_request(
        self, user_id: str, amount: Decimal, method_id: str, details: str
    ) -> Result[PayoutRequest]: ...

    async def create_promotion(self, draft: PromotionDraft) -> Promotion: ...

    async def deduct_funding_balance(self, user_id: str, amount: Decimal) -> None: ...

    async def get_promotion(self, promotion_id: str) -> Optional[Promotion]: ...

    async def has_completed_task(self, promotion_id: str, user_id: str) -> bool: ...

    async def complete_task(self, promotion_id: str, user_id: str, reward_amount: Decimal) -> Result[Decimal]: ...

    async def get_all_users(self) -> list[User]: ...

    async def get_app_stats(self) -> AppStats: ...
