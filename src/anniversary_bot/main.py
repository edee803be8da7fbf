from __future__ import annotations

import logging

from telegram import Update
from telegram.ext import Application

from anniversary_bot.announcement_service import AnnouncementService
from anniversary_bot.bot_handlers import HandlerDependencies, build_handlers
from anniversary_bot.scheduler import AnnouncementScheduler
from anniversary_bot.settings import load_settings
from anniversary_bot.store import BirthdayStore, MemberStore, SettingsStore
from anniversary_bot.timer import TimerArmer

LOGGER = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def start_scheduler(application: Application) -> None:
    scheduler: AnnouncementScheduler = application.bot_data["scheduler"]
    await scheduler.start()
    LOGGER.info("Announcement scheduler started")


async def stop_scheduler(application: Application) -> None:
    scheduler: AnnouncementScheduler = application.bot_data["scheduler"]
    await scheduler.stop()
    LOGGER.info("Announcement scheduler stopped")


def main() -> None:
    configure_logging()

    settings = load_settings()
    birthday_store = BirthdayStore.load(settings.birthdays_path)
    settings_store = SettingsStore.load(settings.settings_path)
    member_store = MemberStore.load(settings.members_path)

    application = Application.builder().token(settings.telegram_bot_token).build()

    service = AnnouncementService(
        bot=application.bot,
        birthday_store=birthday_store,
        member_store=member_store,
        leap_day_rule=settings.leap_day_rule,
    )
    if application.job_queue is None:
        raise RuntimeError("Install python-telegram-bot with the job-queue extra")

    scheduler = AnnouncementScheduler(
        armer=TimerArmer(application.job_queue),
        settings_store=settings_store,
        callbacks=service.callbacks(),
    )

    application.bot_data["settings"] = settings
    application.bot_data["scheduler"] = scheduler
    application.bot_data["handler_deps"] = HandlerDependencies(
        settings=settings,
        birthday_store=birthday_store,
        member_store=member_store,
        scheduler=scheduler,
    )

    for handler in build_handlers():
        application.add_handler(handler)

    application.post_init = start_scheduler
    application.post_shutdown = stop_scheduler
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
