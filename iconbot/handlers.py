from __future__ import annotations

import asyncio
import logging

import httpx
from aiogram import Bot, F, Router
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command, CommandObject
from aiogram.types import (
    BufferedInputFile,
    CallbackQuery,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
)

from .config import Settings
from .conversation import ConversationMachine
from .errors import ImageFetchError
from .releases import format_releases, get_latest_releases
from .sessions import SessionRegistry
from .states import (
    CHOICE_TOKENS,
    Action,
    Choice,
    ChoiceReceived,
    CommandReceived,
    DocumentReceived,
    Event,
    ImageRef,
    OtherReceived,
    SendDocument,
    SendText,
    TextReceived,
)

router = Router(name="icons")


HELP = (
    "These commands are supported:\n"
    "/help – display this text\n"
    "/latest – get the latest DCOS/DCOSX releases\n"
    "/addicon – submit an icon for the pixel launcher overlay\n"
    "/cancel – abort the current submission\n"
)


class TelegramImageFetcher:
    """Downloads an uploaded document by file id."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def __call__(self, image: ImageRef) -> bytes:
        try:
            buf = await self.bot.download(image.file_id)
        except (TelegramAPIError, OSError, asyncio.TimeoutError) as e:
            raise ImageFetchError(str(e)) from e
        if buf is None:
            raise ImageFetchError(f"nothing downloaded for {image.file_id}")
        return buf.read()


class _StatusMessage:
    """Progress reporting: the first text is sent, later ones edit that message."""

    def __init__(self, bot: Bot, chat_id: int):
        self.bot = bot
        self.chat_id = chat_id
        self.message_id: int | None = None

    async def __call__(self, text: str) -> None:
        try:
            if self.message_id is None:
                msg = await self.bot.send_message(self.chat_id, text)
                self.message_id = msg.message_id
            else:
                await self.bot.edit_message_text(
                    text=text, chat_id=self.chat_id, message_id=self.message_id
                )
        except TelegramAPIError as e:
            # Progress is informational only
            logging.warning("Failed to update status in chat_id=%s: %s", self.chat_id, e)


def _keyboard(choices: tuple[Choice, ...]) -> InlineKeyboardMarkup | None:
    if not choices:
        return None
    row = [InlineKeyboardButton(text=c.label, callback_data=c.token) for c in choices]
    return InlineKeyboardMarkup(inline_keyboard=[row])


def _event_from_message(message: Message) -> Event:
    doc = message.document
    if doc is not None:
        return DocumentReceived(
            ImageRef(
                file_id=doc.file_id,
                file_name=doc.file_name,
                mime_type=doc.mime_type,
                file_size=doc.file_size,
            )
        )
    if message.text is not None:
        return TextReceived(message.text)
    return OtherReceived()


async def _perform(bot: Bot, chat_id: int, actions: list[Action]) -> None:
    for action in actions:
        if isinstance(action, SendDocument):
            await bot.send_document(
                chat_id,
                BufferedInputFile(action.data, filename=action.filename),
                caption=action.caption or None,
                reply_markup=_keyboard(action.choices),
            )
        elif isinstance(action, SendText):
            await bot.send_message(chat_id, action.text, reply_markup=_keyboard(action.choices))


async def _drive(
    bot: Bot,
    chat_id: int,
    event: Event,
    machine: ConversationMachine,
    registry: SessionRegistry,
) -> None:
    actions = await machine.drive(registry, chat_id, event, progress=_StatusMessage(bot, chat_id))
    await _perform(bot, chat_id, actions)


@router.message(Command("start"))
@router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    await message.answer(HELP)


@router.message(Command("latest"))
async def cmd_latest(message: Message, settings: Settings) -> None:
    try:
        releases = await get_latest_releases(timeout_sec=settings.http_timeout_sec)
    except httpx.HTTPError:
        logging.exception("Fetching OTA data failed")
        await message.answer("Could not fetch the latest releases, try again later.")
        return
    await message.answer(format_releases(releases))


@router.message(Command("addicon", "cancel"))
async def cmd_conversation(
    message: Message,
    command: CommandObject,
    machine: ConversationMachine,
    registry: SessionRegistry,
) -> None:
    event = CommandReceived(command.command.lower())
    await _drive(message.bot, message.chat.id, event, machine, registry)


@router.message()
async def on_message(
    message: Message, machine: ConversationMachine, registry: SessionRegistry
) -> None:
    await _drive(message.bot, message.chat.id, _event_from_message(message), machine, registry)


@router.callback_query(F.data.in_(CHOICE_TOKENS))
async def on_choice(
    query: CallbackQuery, machine: ConversationMachine, registry: SessionRegistry
) -> None:
    await query.answer()
    if query.message is None:
        return
    chat_id = query.message.chat.id
    # A prompt is answered once; drop its buttons so they cannot be tapped later
    try:
        await query.bot.edit_message_reply_markup(
            chat_id=chat_id, message_id=query.message.message_id, reply_markup=None
        )
    except TelegramAPIError as e:
        logging.warning("Could not remove the keyboard in chat_id=%s: %s", chat_id, e)
    await _drive(query.bot, chat_id, ChoiceReceived(query.data), machine, registry)
