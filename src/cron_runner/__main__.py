"""Run the scheduler against the configured database until interrupted."""

import asyncio
import logging

from cron_runner.config import SchedulerSettings, configure_logging
from cron_runner.scheduler import PeriodicTrigger, SchedulerLoop, SchedulerState
from cron_runner.storages.sqlalchemy import SqlAlchemyTaskStore

logger = logging.getLogger(__name__)


async def main():
    settings = SchedulerSettings()
    configure_logging(settings.log_level)

    store = SqlAlchemyTaskStore(settings.database_url)
    await store.create_tables()

    state = SchedulerState(store, settings)
    trigger = PeriodicTrigger(SchedulerLoop(state))
    await trigger.start()
    try:
        await asyncio.Event().wait()
    finally:
        await trigger.stop()
        await store.dispose()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
