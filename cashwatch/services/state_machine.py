from enum import Enum
from typing import Optional, Union


class FlowKind(str, Enum):
    NONE = "none"
    PAYOUT = "payout"
    PROMOTION_CREATION = "promotion_creation"


class PayoutStep(str, Enum):
    AWAITING_DETAILS = "awaiting_details"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class PromotionStep(str, Enum):
    AWAITING_CHANNEL_URL = "awaiting_channel_url"
    AWAITING_BOT_URL = "awaiting_bot_url"


Step = Union[PayoutStep, PromotionStep]


VALID_STEPS = {
    FlowKind.NONE: frozenset(),
    FlowKind.PAYOUT: frozenset(PayoutStep),
    FlowKind.PROMOTION_CREATION: frozenset(PromotionStep),
}

# Steps a flow may be opened at.
ENTRY_STEPS = {
    FlowKind.PAYOUT: frozenset({PayoutStep.AWAITING_DETAILS}),
    FlowKind.PROMOTION_CREATION: frozenset(PromotionStep),
}

VALID_TRANSITIONS = {
    PayoutStep.AWAITING_DETAILS: [PayoutStep.AWAITING_CONFIRMATION],
    PayoutStep.AWAITING_CONFIRMATION: [],
    PromotionStep.AWAITING_CHANNEL_URL: [],
    PromotionStep.AWAITING_BOT_URL: [],
}


class InvalidStepError(Exception):
    def __init__(self, flow: FlowKind, step: Optional[Step]):
        self.flow = flow
        self.step = step
        step_value = step.value if step is not None else "none"
        super().__init__(f"Invalid step for flow {flow.value}: {step_value}")


class InvalidTransitionError(Exception):
    def __init__(self, from_step: Step, to_step: Step):
        self.from_step = from_step
        self.to_step = to_step
        super().__init__(f"Invalid transition: {from_step.value} -> {to_step.value}")


def is_valid_step(flow: FlowKind, step: Optional[Step]) -> bool:
    """Check that step belongs to the flow."""
    return step in VALID_STEPS.get(flow, frozenset())


def can_open(flow: FlowKind, step: Step) -> bool:
    return step in ENTRY_STEPS.get(flow, frozenset())


def can_transition(from_step: Step, to_step: Step) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_step, [])
    return to_step in allowed


def transition(from_step: Step, to_step: Step) -> Step:
    """Perform step transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_step, to_step):
        raise InvalidTransitionError(from_step, to_step)
    return to_step


def promotion_step_for(promotion_type: str) -> PromotionStep:
    """URL-collection step for a promotion sub-type."""
    if promotion_type == "bot":
        return PromotionStep.AWAITING_BOT_URL
    return PromotionStep.AWAITING_CHANNEL_URL
