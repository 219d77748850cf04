from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class BroadcastRequest(BaseModel):
    text: str = Field(min_length=1)


class BroadcastAccepted(BaseModel):
    success: bool
    recipients: int


class RewardRequest(BaseModel):
    amount: Decimal = Field(gt=0)


class AdminActionResponse(BaseModel):
    success: bool
    id: str
    status: Optional[str] = None
    balance: Optional[str] = None
    message: Optional[str] = None


class FundingRequest(BaseModel):
    amount: Decimal = Field(gt=0)
