from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from logging.handlers import RotatingFileHandler

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from dotenv import load_dotenv

from iconbot.config import Settings, load_settings
from iconbot.conversation import ConversationMachine
from iconbot.conversion import ConversionPipeline, potrace, svg2vd
from iconbot.gitlab import GitLabClient
from iconbot.handlers import TelegramImageFetcher
from iconbot.handlers import router as icons_router
from iconbot.playstore import PlayStoreClient
from iconbot.publisher import RepositoryPublisher
from iconbot.security import AccessMiddleware
from iconbot.sessions import SessionRegistry


def _setup_logging(settings: Settings) -> None:
    # Console always; optional rotating file
    log_format = "%(asctime)s %(levelname)s %(name)s %(message)s"
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=log_format)
    if settings.log_file:
        try:
            settings.log_file.parent.mkdir(parents=True, exist_ok=True)
            fh = RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backups,
                encoding="utf-8",
            )
            fh.setLevel(level)
            fh.setFormatter(logging.Formatter(log_format))
            root = logging.getLogger()
            root.addHandler(fh)
        except Exception:
            logging.exception("Failed to set up file logging")


def build_machine(settings: Settings, bot: Bot) -> ConversationMachine:
    pipeline = ConversionPipeline(
        tracer=potrace(settings.potrace_cmd, settings.converter_timeout_sec),
        recoder=svg2vd(settings.svg2vd_cmd, settings.converter_timeout_sec),
    )
    gitlab = GitLabClient(
        settings.gitlab_api_url, settings.gitlab_token, timeout_sec=settings.http_timeout_sec
    )
    return ConversationMachine(
        app_exists=PlayStoreClient(timeout_sec=settings.http_timeout_sec).app_exists,
        fetch_image=TelegramImageFetcher(bot),
        pipeline=pipeline,
        publisher=RepositoryPublisher(settings, gitlab),
        max_upload_bytes=settings.max_upload_bytes,
    )


async def main() -> None:
    # Load .env if present
    load_dotenv()

    settings = load_settings()
    _setup_logging(settings)

    bot = Bot(token=settings.token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = Dispatcher()

    access = AccessMiddleware(settings, SessionRegistry(), build_machine(settings, bot))
    dp.message.middleware(access)
    dp.callback_query.middleware(access)

    dp.include_router(icons_router)

    logging.info("Starting Leonardo. Overlay repo: %s", settings.overlay_repo_path or "<unset>")
    with suppress(KeyboardInterrupt):
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (SystemExit, KeyboardInterrupt):
        pass
