"""Server-side reminder wiring: startup reload and the periodic sweep."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from logger import logger
from .dispatcher import ReminderDispatcher


async def reload_reminders_on_startup(dispatcher: ReminderDispatcher) -> int:
    """Re-create timers lost with the previous process.

    Args:
        dispatcher: The process dispatcher

    Returns:
        Count of reminders scheduled
    """
    try:
        return await dispatcher.reload_pending()
    except Exception as e:
        logger.error(f"Failed to reload reminders: {e}")
        return 0


def start_reminder_polling(
    scheduler: AsyncIOScheduler,
    dispatcher: ReminderDispatcher,
    seconds: int = 60
) -> None:
    """Sweep the job registry every `seconds` for timers that should have fired.

    Args:
        scheduler: APScheduler instance
        dispatcher: The process dispatcher
        seconds: Sweep interval
    """
    async def sweep():
        fired = await dispatcher.registry.run_due()
        if fired > 0:
            logger.info(f"Reminder sweep fired {fired} overdue reminder(s)")

    scheduler.add_job(
        sweep,
        trigger=IntervalTrigger(seconds=seconds),
        id="reminder_sweep",
        name="Sweep overdue reminders",
        replace_existing=True
    )
    logger.info(f"Started reminder sweep (every {seconds}s)")
