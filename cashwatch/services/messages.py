"""User-facing message texts (HTML parse mode)."""

from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Optional

from cashwatch.services.domain import AppStats, Promotion, User
from cashwatch.services.validators import PaymentMethod, to_decimal

MENU_PROMPT = "Please use the buttons below:"
BACK_TO_MENU = "Welcome back to the main menu!"
OPERATION_CANCELLED = "❌ Operation cancelled."
PAYOUT_CANCELLED = (
    "❌ Payout request cancelled. You can request a new withdrawal anytime with the 🏦 Cashout button."
)
GENERIC_FAILURE = "❌ Something went wrong. Please try again later."
PAYOUT_FAILURE = "❌ Error processing your payout. Please try again later."
PROMOTION_FAILURE = "❌ Failed to create promotion. Please try again."
NO_PENDING_PAYOUT = "There is no withdrawal waiting for confirmation."
USER_NOT_FOUND = "❌ Your account was not found. Send /start to register."


def usd(amount) -> str:
    return f"${to_decimal(amount):.2f}"


def format_welcome() -> str:
    return """Welcome to CashWatch Bot! You are authenticated ✅

🚀 Your time = Money. No excuses.
💸 Watch. Earn. Withdraw. Repeat.

👉 Ready to turn your screen-time into income? Let's go!"""


def format_account(user: User, friends_invited: int, referral_earnings: Decimal) -> str:
    username = f"@{user.username}" if user.username else (user.first_name or "User")
    joined = user.created_at.strftime("%d %b %Y") if isinstance(user.created_at, datetime) else "Unknown"
    return f"""📊 Your Earnings Dashboard

👤 Username: {escape(username)}
🆔 User ID: {user.chat_id}

👥 Total Friends Invited: {friends_invited}
💰 Total Earnings: {usd(user.total_earned)}
💎 Current Balance: {usd(user.balance)}
🎁 Earnings from Referrals: {usd(referral_earnings)}
📅 Joined On: {joined}

🚀 Keep sharing your invite link daily and multiply your earnings!"""


def format_no_balance(balance) -> str:
    return f"💰 Your current balance is {usd(balance)}.\n\n🚀 Complete tasks or refer friends to earn money!"


def format_select_payment(balance) -> str:
    return f"Select Payment System:\n\nYour balance: {usd(balance)}"


def format_minimum_not_met(method: PaymentMethod, balance) -> str:
    return (
        f"❌ Minimum withdrawal for {method.name} is {usd(method.min_withdrawal)}.\n\n"
        f"Your balance: {usd(balance)}"
    )


def format_details_request(method: PaymentMethod, amount) -> str:
    return (
        f"{method.emoji} {method.name} Payout\n\n"
        f"Amount: {usd(amount)}\n"
        f"Minimum: {usd(method.min_withdrawal)}\n\n"
        f"📝 {method.details_prompt}"
    )


def format_confirmation(method: PaymentMethod, amount, details: str) -> str:
    return f"""✅ Please Confirm Your Withdrawal

{method.emoji} Payment System: {method.name}
💰 Amount: {usd(amount)}
📋 Payment Details: {escape(details)}

⚠️ Please verify all details are correct before confirming.

Tap "✅ CONFIRM" to proceed or "❌ CANCEL" to cancel."""


def format_payout_success(method: PaymentMethod) -> str:
    return (
        "✅ Payout Request Confirmed\n\n"
        f"Your {method.name} withdrawal request has been submitted successfully "
        "and will be processed within 1 hour.\n\n"
        "📧 You'll receive a notification once processed."
    )


def format_admin_payout_notice(user: User, method: PaymentMethod, amount, details: str, when: datetime) -> str:
    return f"""💰 New Payout Request

👤 User: {escape(user.display_name)}
🆔 Telegram ID: {user.chat_id}
💰 Amount: {usd(amount)}
💳 Payment System: {method.name}
📋 Payment Details: {escape(details)}
⏰ Time: {when.strftime("%Y-%m-%d %H:%M:%S %Z")}"""


def format_affiliates(bot_username: str, referral_code: str) -> str:
    return f"""🔗 Your Personal Invite Link:
https://t.me/{bot_username}?start={referral_code}

💵 Get $0.01 for every friend who joins!
🚀 Share now and start building your earnings instantly."""


def format_referral_joined(new_user: User) -> str:
    return (
        f"🎉 Great news! {escape(new_user.display_name)} joined using your referral link. "
        "You'll earn $0.01 when they watch 10 ads!"
    )


PROMOTION_MENU = """📈 Promotion
→ 📝 Creation of an ad campaign

Choose promotion type:"""


def format_promotion_prompt(title: str, ad_cost, bot_username: str, instant_verify: bool) -> str:
    verify_line = f"\nAdd @{bot_username} → Instant Verify ⚡\n" if instant_verify else "\n"
    return f"""📈 Promotion
Type: {title}{verify_line}
💰 Ad Cost: {usd(ad_cost)}

📝 Enter the URL:"""


def format_insufficient_funding(balance, required) -> str:
    return f"""❌ You don't have enough balance to advertise
⭐ Use 💵 Add funds to top up your balance

Current balance: {usd(balance)}
Required: {usd(required)}"""


def format_promotion_created(title: str, url: str, reward_amount, total_slots: int) -> str:
    return f"""📈 Ad campaign {title}
({escape(url)}) successfully created ✅

Task appears in the App with a {total_slots} user limit.
Each valid user gets ${to_decimal(reward_amount)} reward.
After {total_slots}/{total_slots} completed, task auto ends."""


def format_channel_post(promotion: Promotion) -> str:
    reward_display = to_decimal(promotion.reward_amount) * 1000
    return f"""🌍 World's Biggest Free Crypto Drop! 🌍
💎 ${reward_display:.2f} Crypto each → {promotion.total_slots} Winners 🔥

🤯 Imagine… {promotion.total_slots} people flexing FREE crypto – why not YOU?

✨ Sponsored by 👉 {escape(promotion.url)}
#Crypto #Giveaway #Airdrop

🚀 Claim in 1 tap – before it's over!"""


HOW_TO = """⁉️ How to Use CashWatch Bot

🔸 <b>Account</b> - View your profile and earnings
🔸 <b>Cashout</b> - Withdraw your earnings
🔸 <b>Affiliates</b> - Get your referral link to invite friends
🔸 <b>Promotion</b> - Create ad campaigns to promote your channels/bots
🔸 <b>Add funds</b> - Add balance to create promotions

💰 <b>How to Earn:</b>
• Complete tasks in the app
• Refer friends with your link
• Create promotions for others to complete

🚀 Start by visiting the web app and completing available tasks!"""


def format_add_funds(funding_balance) -> str:
    return f"""💵 Add Funds

To add funds to your main balance for creating promotions, please contact our support team.

📧 Support: @CashWatchSupport
💰 Minimum deposit: $1.00
⚡ Funds are added within 24 hours

Your current main balance: {usd(funding_balance)}"""


def format_stats(stats: AppStats) -> str:
    return f"""📊 Application Stats

👥 Total Registered Users: {stats.total_users:,}
👤 Active Users Today: {stats.active_users_today}
🔗 Total Friends Invited: {stats.total_invites:,}

💰 Total Earnings (All Users): {usd(stats.total_earnings)}
💎 Total Referral Earnings: {usd(stats.total_referral_earnings)}
🏦 Total Payouts: {usd(stats.total_payouts)}

🚀 Growth (Last 24h): +{stats.new_users_last_24h} new users"""


def format_broadcast_summary(success: int, failed: int, total: int) -> str:
    return (
        "📢 Broadcast Summary:\n\n"
        f"✅ Successfully sent: {success}\n"
        f"❌ Failed: {failed}\n"
        f"📊 Total users: {total}"
    )


PROMOTION_NOT_FOUND = "❌ This promotion no longer exists."
PROMOTION_EXPIRED = "⚡ This task has expired."
PROMOTION_ALREADY_CLAIMED = "❌ You have already claimed this promotion."
CLAIM_FAILURE = "❌ Error processing your claim. Please try again."


def format_claim_instructions(promotion: Promotion, delay_seconds: float) -> str:
    seconds = int(delay_seconds)
    if promotion.type == "bot":
        return (
            f"🤖 To claim your reward, please start the bot:\n{escape(promotion.url)}\n\n"
            f"After starting the bot, you will be automatically verified in {seconds} seconds and receive your reward!"
        )
    return (
        f"🔗 To claim your reward, please join the channel/chat:\n{escape(promotion.url)}\n\n"
        f"After joining, you will be automatically verified in {seconds} seconds and receive your reward!"
    )


def format_reward_added(amount) -> str:
    return f"Reward ${to_decimal(amount)} has been added to your balance ✅"


def format_event_notice(event_type: str, amount: Optional[str] = None, title: Optional[str] = None,
                        refunded: bool = False, refund_amount: Optional[str] = None) -> Optional[str]:
    """Chat text mirroring a push event; None for events that stay web-only."""
    if event_type == "withdrawal_approved":
        return f"✅ Your withdrawal of {usd(amount)} has been approved."
    if event_type == "withdrawal_rejected":
        return f"❌ Your withdrawal of {usd(amount)} was rejected and your balance was refunded."
    if event_type == "promotion_approved":
        return f"✅ Your promotion \"{escape(title or '')}\" has been approved and is now live!"
    if event_type == "promotion_rejected":
        suffix = " and you have been refunded" if refunded else ""
        return f"❌ Your promotion \"{escape(title or '')}\" has been rejected{suffix}."
    if event_type == "task_deleted":
        suffix = f" (refund: {usd(refund_amount)})" if refunded and refund_amount else ""
        return f"🗑️ Your task \"{escape(title or '')}\" has been deleted by admin{suffix}."
    if event_type == "referral_bonus":
        return f"🎁 Referral bonus of {usd(amount)} added to your balance!"
    return None
