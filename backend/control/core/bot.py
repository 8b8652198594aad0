"""Twitch EventSub bot: feeds cheers and subscriptions into the alert controller."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from twitchio import eventsub
from twitchio.ext import commands

if TYPE_CHECKING:
    from control.core.config import ControlSettings
    from control.core.controller import AlertController

LOGGER: logging.Logger = logging.getLogger("Bot")


def get_alert_subscriptions(broadcaster_user_id: str) -> list[eventsub.SubscriptionPayload]:
    """EventSub subscriptions that produce alerts."""
    return [
        eventsub.ChannelCheerSubscription(broadcaster_user_id=broadcaster_user_id),
        eventsub.ChannelSubscribeSubscription(broadcaster_user_id=broadcaster_user_id),
        eventsub.ChannelSubscribeMessageSubscription(broadcaster_user_id=broadcaster_user_id),
    ]


class AlertBot(commands.Bot):
    """Single-channel bot listening on the EventSub websocket with the broadcaster's token."""

    def __init__(self, *, controller: AlertController, settings: ControlSettings) -> None:
        self.controller = controller
        self.broadcaster_id = settings.twitch_broadcaster_id
        self._access_token = settings.twitch_access_token
        self._refresh_token = settings.twitch_refresh_token
        super().__init__(
            client_id=settings.twitch_client_id,
            client_secret=settings.twitch_client_secret,
            bot_id=settings.twitch_bot_id,
            owner_id=settings.twitch_broadcaster_id,
            prefix="!",
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def setup_hook(self) -> None:
        await self.load_module("control.components.alerts")
        await self.add_token(self._access_token, self._refresh_token)

        for sub in get_alert_subscriptions(self.broadcaster_id):
            try:
                await self.subscribe_websocket(payload=sub, token_for=self.broadcaster_id)
            except Exception as e:
                LOGGER.error(f"Failed to subscribe {type(sub).__name__}: {e}")
            else:
                LOGGER.info(f"Subscribed {type(sub).__name__} for {self.broadcaster_id}")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def event_ready(self) -> None:
        LOGGER.info(f"Successfully logged in as: {self.bot_id}")

    async def event_eventsub_ready(self) -> None:
        LOGGER.info("EventSub is ready to receive notifications")

    async def event_eventsub_error(self, error: Exception) -> None:
        LOGGER.error(f"EventSub error: {error}")

    async def run(self) -> None:
        """Start without the OAuth web adapter; tokens come from settings."""
        await self.start(with_adapter=False, load_tokens=False, save_tokens=False)
