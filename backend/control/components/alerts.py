import logging

import twitchio
from twitchio.ext import commands

from shared.models.alert import AlertCategory

LOGGER: logging.Logger = logging.getLogger("AlertComponent")

ANONYMOUS_USERNAME = "Anonymous"


def _display_name(user: twitchio.PartialUser | None) -> str:
    if user is None:
        return ANONYMOUS_USERNAME
    return user.display_name or user.name or ANONYMOUS_USERNAME


class AlertComponent(commands.Component):
    """EventSub listeners that turn cheers and subscriptions into alerts"""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @property
    def controller(self):
        return self.bot.controller  # type: ignore[attr-defined]

    @commands.Component.listener()
    async def event_cheer(self, payload: twitchio.ChannelCheer) -> None:
        """Cheer event"""
        user_name = ANONYMOUS_USERNAME if payload.anonymous else _display_name(payload.user)
        record = await self.controller.ingest(
            {
                "username": user_name,
                "amount": payload.bits,
                "message": payload.message or "",
                "category": AlertCategory.BITS.value,
            }
        )
        status = "queued" if record else "ignored"
        LOGGER.info(f"[{payload.broadcaster.name}] Cheer: {user_name} ({payload.bits}) {status}")

    @commands.Component.listener()
    async def event_subscription(self, payload: twitchio.ChannelSubscribe) -> None:
        """New subscription (no message)"""
        if payload.gift:
            LOGGER.debug(f"[{payload.broadcaster.name}] Gift sub to {_display_name(payload.user)}")
            return
        user_name = _display_name(payload.user)
        await self.controller.ingest(
            {
                "username": user_name,
                "amount": 1,
                "message": "",
                "category": AlertCategory.SUBSCRIPTION.value,
            }
        )
        LOGGER.info(f"[{payload.broadcaster.name}] Sub: {user_name} ({payload.tier})")

    @commands.Component.listener()
    async def event_subscription_message(self, payload: twitchio.ChannelSubscriptionMessage) -> None:
        """Resubscription with a chat message"""
        user_name = _display_name(payload.user)
        months = payload.cumulative_months or 1
        await self.controller.ingest(
            {
                "username": user_name,
                "amount": months,
                "message": payload.text or "",
                "category": AlertCategory.SUBSCRIPTION.value,
            }
        )
        LOGGER.info(f"[{payload.broadcaster.name}] Resub: {user_name} ({months} months)")


async def setup(bot: commands.Bot) -> None:
    component = AlertComponent(bot)
    await bot.add_component(component)
    LOGGER.info(
        "AlertComponent loaded with listeners: "
        "event_cheer, event_subscription, event_subscription_message"
    )


async def teardown(bot: commands.Bot) -> None:
    ...
