# bot.py
import asyncio
import logging

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties

from config_reader import config
from services import container


async def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    )
    bot = Bot(token=config.bot_token, default=DefaultBotProperties(parse_mode="HTML"))
    services = container.build_services(bot, config)
    dp = container.build_dispatcher(services)
    await container.start_background_jobs(services, config)

    try:
        await bot.delete_webhook(drop_pending_updates=True)
        await dp.start_polling(bot)
    finally:
        await container.shutdown(services)
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
