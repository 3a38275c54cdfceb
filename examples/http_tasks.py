import asyncio

from cron_runner.config import SchedulerSettings, configure_logging
from cron_runner.domain.task import TaskDefinition, TaskProtocol, HttpMethod
from cron_runner.scheduler import PeriodicTrigger, SchedulerLoop, SchedulerState
from cron_runner.storages.sqlalchemy import InMemoryTaskStore

# Set up an in-memory store with a couple of tasks
store = InMemoryTaskStore()
settings = SchedulerSettings(tick_interval_seconds=60)

tasks = [
    TaskDefinition(
        id=1,
        name="Ping httpbin every minute",
        schedule="* * * * *",
        protocol=TaskProtocol.HTTP,
        endpoint="https://httpbin.org/get",
        http_method=HttpMethod.GET,
        timeout_seconds=10,
    ),
    TaskDefinition(
        id=2,
        name="Post a heartbeat at second 0 of every minute",
        schedule="0 * * * * *",
        protocol=TaskProtocol.HTTP,
        endpoint="https://httpbin.org/post",
        http_method=HttpMethod.POST,
        request_headers='{"X-Source": "cron-runner"}',
        request_body='{"status": "alive"}',
        retry_times=2,
        retry_interval_seconds=5,
    ),
]


async def main():
    configure_logging("INFO")
    await store.create_tables()
    for task in tasks:
        await store.add_task(task)

    state = SchedulerState(store, settings)
    loop = SchedulerLoop(state)
    trigger = PeriodicTrigger(loop)

    await trigger.start()
    try:
        await asyncio.sleep(150)
    finally:
        await trigger.stop()

    for task in tasks:
        for log in await store.list_execution_logs(task.id):
            print(f"{log.started_at:%H:%M:%S} {log.name}: {log.status.name} {log.result}")


if __name__ == "__main__":
    asyncio.run(main())
