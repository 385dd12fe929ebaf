import asyncio
import logging

from aiogram import Bot, Dispatcher

from freedom_bot.bot.router import setup_bot
from freedom_bot.core.config import settings
from freedom_bot.core.logging import setup_logging


async def main() -> None:
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)
    if not settings.bot_token:
        logger.error("bot_token_missing")
        return
    bot = Bot(token=settings.bot_token)
    dispatcher = Dispatcher()
    setup_bot(dispatcher)

    logger.info("Starting bot polling")
    try:
        await bot.delete_webhook(drop_pending_updates=False)
        await dispatcher.start_polling(bot)
    finally:
        await bot.session.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
