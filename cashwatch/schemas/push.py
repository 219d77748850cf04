from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class PushFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# Server -> client


class Connected(PushFrame):
    type: Literal["connected"] = "connected"


class AuthErrorFrame(PushFrame):
    type: Literal["auth_error"] = "auth_error"
    message: str = "Authentication failed"


class Pong(PushFrame):
    type: Literal["pong"] = "pong"


class RewardGranted(PushFrame):
    type: Literal["ad_reward"] = "ad_reward"
    amount: str


class WithdrawalRequested(PushFrame):
    type: Literal["withdrawal_requested"] = "withdrawal_requested"
    amount: str


class WithdrawalApproved(PushFrame):
    type: Literal["withdrawal_approved"] = "withdrawal_approved"
    amount: str


class WithdrawalRejected(PushFrame):
    type: Literal["withdrawal_rejected"] = "withdrawal_rejected"
    amount: str


class ReferralBonus(PushFrame):
    type: Literal["referral_bonus"] = "referral_bonus"
    amount: str


class BalanceDelta(PushFrame):
    type: Literal["balance_update"] = "balance_update"
    amount: str


class PromotionApproved(PushFrame):
    type: Literal["promotion_approved"] = "promotion_approved"
    title: str


class PromotionRejected(PushFrame):
    type: Literal["promotion_rejected"] = "promotion_rejected"
    title: str
    refunded: bool = False


class TaskDeleted(PushFrame):
    type: Literal["task_deleted"] = "task_deleted"
    title: str
    refunded: bool = False
    refund_amount: Optional[str] = Field(default=None, alias="refundAmount")


class TaskRemoved(PushFrame):
    type: Literal["task_removed"] = "task_removed"
    promotion_id: str = Field(alias="promotionId")


OutboundEvent = Annotated[
    Union[
        Connected,
        AuthErrorFrame,
        Pong,
        RewardGranted,
        WithdrawalRequested,
        WithdrawalApproved,
        WithdrawalRejected,
        ReferralBonus,
        BalanceDelta,
        PromotionApproved,
        PromotionRejected,
        TaskDeleted,
        TaskRemoved,
    ],
    Field(discriminator="type"),
]

_outbound_adapter = TypeAdapter(OutboundEvent)

DOMAIN_EVENT_TYPES = frozenset(
    {
        "ad_reward",
        "withdrawal_requested",
        "withdrawal_approved",
        "withdrawal_rejected",
        "referral_bonus",
        "balance_update",
        "promotion_approved",
        "promotion_rejected",
        "task_deleted",
        "task_removed",
    }
)


def parse_outbound(data: dict[str, Any]) -> Optional[PushFrame]:
    """Decode a server frame; unknown or malformed frames yield None."""
    try:
        return _outbound_adapter.validate_python(data)
    except ValidationError:
        return None


# Client -> server


class AuthFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["auth"] = "auth"
    session_token: str = Field(alias="sessionToken", min_length=1)


class SessionTokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_token: str = Field(alias="sessionToken")
    expires_in: int = Field(alias="expiresIn")
