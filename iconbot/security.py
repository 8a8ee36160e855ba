from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any, Callable

from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, Message, TelegramObject

from .config import Settings
from .conversation import ConversationMachine
from .sessions import SessionRegistry


class AccessMiddleware(BaseMiddleware):
    """Injects the shared services into handlers and applies the optional user allowlist.

    With an empty ``allowed_user_ids`` everyone may submit icons. /start and
    /help always get through so strangers see what the bot is about.
    """

    def __init__(self, settings: Settings, registry: SessionRegistry, machine: ConversationMachine):
        super().__init__()
        self.settings = settings
        self.registry = registry
        self.machine = machine

    async def __call__(
        self,
        handler: Callable[[TelegramObject, dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: dict[str, Any],
    ) -> Any:
        # Inject services for handler DI
        data["settings"] = self.settings
        data["registry"] = self.registry
        data["machine"] = self.machine

        allowed = self.settings.allowed_user_ids
        if not allowed:
            return await handler(event, data)

        user_id: int | None = None
        text: str | None = None

        if isinstance(event, Message):
            if event.from_user:
                user_id = event.from_user.id
            text = event.text or event.caption or ""
        elif isinstance(event, CallbackQuery):
            if event.from_user:
                user_id = event.from_user.id
            text = event.data or ""

        if isinstance(event, Message) and text:
            low = text.lower()
            if low.startswith("/start") or low.startswith("/help"):
                return await handler(event, data)

        if user_id is None or user_id not in allowed:
            logging.warning("Access denied for user_id=%s text=%r", user_id, (text or "")[:100])
            if isinstance(event, Message):
                await event.answer("Sorry, you are not allowed to submit icons with this bot.")
            elif isinstance(event, CallbackQuery):
                await event.answer("Access denied.", show_alert=True)
            return None

        return await handler(event, data)
