from typing import Optional

from cashwatch.logging_config import get_logger
from cashwatch.services import messages
from cashwatch.services.domain import DomainActions, Referral, User
from cashwatch.services.telegram_service import MessageSink, is_delivered

logger = get_logger("referral_service")


async def credit_referral(
    domain: DomainActions,
    sink: MessageSink,
    new_user: User,
    is_new_user: bool,
    referral_code: Optional[str],
) -> Optional[Referral]:
    """Link a first-time user to the owner of referral_code.

    Only users created by the current event are credited, so replaying the same
    /start never credits twice. Self-referral is a silent no-op. The referrer
    notification is best-effort and never undoes the credit.
    """
    if not is_new_user:
        logger.info("Skipping referral, user already exists", extra={"context": {"user_id": new_user.id}})
        return None
    if not referral_code:
        return None
    if referral_code == new_user.referral_code:
        logger.info("Self-referral ignored", extra={"context": {"user_id": new_user.id}})
        return None

    referrer = await domain.get_user_by_referral_code(referral_code)
    if referrer is None:
        logger.info("Unknown referral code", extra={"context": {"referral_code": referral_code}})
        return None
    if referrer.id == new_user.id:
        logger.info("Self-referral ignored", extra={"context": {"user_id": new_user.id}})
        return None

    referral = await domain.create_referral(referrer.id, new_user.id)
    logger.info(
        "Referral created",
        extra={"context": {"referrer_id": referrer.id, "referee_id": new_user.id, "referral_id": referral.id}},
    )

    if referrer.chat_id:
        try:
            result = await sink.send_message(referrer.chat_id, messages.format_referral_joined(new_user))
            if not is_delivered(result):
                logger.warning("Referral notification not delivered", extra={"context": {"referrer_id": referrer.id}})
        except Exception as e:
            logger.warning(f"Referral notification failed: {e}", extra={"context": {"referrer_id": referrer.id}})
    return referral
