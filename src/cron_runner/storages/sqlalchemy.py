import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.future import select
from sqlalchemy.orm import declarative_base, sessionmaker
from pydantic import ValidationError

from cron_runner.domain.task import TaskDefinition
from cron_runner.domain.execution import ExecutionStatus, TaskExecutionLog
from cron_runner.storages.protocol import TaskStore

logger = logging.getLogger(__name__)

Base = declarative_base()

TASK_ENABLED = 1
TASK_DISABLED = 0


class TaskModel(Base):
    __tablename__ = 'tasks'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    spec = Column(String, nullable=False, default="")
    protocol = Column(Integer, nullable=False, default=1)
    command = Column(String, nullable=False, default="")
    http_method = Column(Integer, nullable=False, default=1)
    timeout = Column(Integer, nullable=False, default=0)
    retry_times = Column(Integer, nullable=False, default=0)
    retry_interval = Column(Integer, nullable=False, default=0)
    request_headers = Column(Text)
    request_body = Column(Text)
    status = Column(Integer, nullable=False, default=TASK_ENABLED)


class TaskLogModel(Base):
    __tablename__ = 'task_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    # not a foreign key: history rows outlive deleted tasks
    task_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    spec = Column(String, nullable=False, default="")
    protocol = Column(Integer, nullable=False)
    command = Column(String, nullable=False, default="")
    timeout = Column(Integer, nullable=False, default=0)
    retry_times = Column(Integer, nullable=False, default=0)
    hostname = Column(String, nullable=False, default="")
    status = Column(Integer, nullable=False)
    result = Column(Text)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True))


class SqlAlchemyTaskStore(TaskStore):
    def __init__(self, db_url: str):
        self.engine = create_async_engine(db_url)
        self.async_session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()

    async def add_task(self, task: TaskDefinition) -> int:
        """Insert a task row. The scheduler itself never writes tasks; this is the hook for the CRUD layer."""
        async with self.async_session() as session:
            db_task = TaskModel(
                id=task.id,
                name=task.name,
                spec=task.schedule,
                protocol=int(task.protocol),
                command=task.endpoint,
                http_method=int(task.http_method),
                timeout=task.timeout_seconds,
                retry_times=task.retry_times,
                retry_interval=task.retry_interval_seconds,
                request_headers=task.request_headers,
                request_body=task.request_body,
                status=TASK_ENABLED if task.enabled else TASK_DISABLED
            )
            session.add(db_task)
            await session.commit()
            return db_task.id

    async def fetch_enabled_tasks(self) -> List[TaskDefinition]:
        async with self.async_session() as session:
            result = await session.execute(select(TaskModel).filter_by(status=TASK_ENABLED))
            tasks = []
            for db_task in result.scalars():
                try:
                    tasks.append(self._db_to_task(db_task))
                except ValidationError as exc:
                    logger.warning("Skipping task %s with invalid row data: %s", db_task.id, exc)
            return tasks

    async def insert_execution_log(self, entry: TaskExecutionLog) -> int:
        async with self.async_session() as session:
            db_log = TaskLogModel(
                task_id=entry.task_id,
                name=entry.name,
                spec=entry.schedule,
                protocol=int(entry.protocol),
                command=entry.endpoint,
                timeout=entry.timeout_seconds,
                retry_times=entry.retry_times,
                hostname=entry.hostname,
                status=int(entry.status),
                result=entry.result,
                start_time=entry.started_at,
                end_time=entry.ended_at
            )
            session.add(db_log)
            await session.commit()
            return db_log.id

    async def update_execution_log(self, log_id: int, status: ExecutionStatus, result: str, ended_at: datetime) -> bool:
        async with self.async_session() as session:
            query = await session.execute(select(TaskLogModel).filter_by(id=log_id))
            db_log = query.scalar_one_or_none()
            if db_log:
                db_log.status = int(status)
                db_log.result = result
                db_log.end_time = ended_at
                await session.commit()
                return True
            return False

    async def get_execution_log(self, log_id: int) -> Optional[TaskExecutionLog]:
        async with self.async_session() as session:
            result = await session.execute(select(TaskLogModel).filter_by(id=log_id))
            db_log = result.scalar_one_or_none()
            if db_log:
                return self._db_to_log(db_log)
            return None

    async def list_execution_logs(self, task_id: int, limit: int = 20) -> List[TaskExecutionLog]:
        async with self.async_session() as session:
            result = await session.execute(
                select(TaskLogModel)
                .filter_by(task_id=task_id)
                .order_by(TaskLogModel.start_time.desc(), TaskLogModel.id.desc())
                .limit(limit)
            )
            return [self._db_to_log(db_log) for db_log in result.scalars()]

    def _db_to_task(self, db_task: TaskModel) -> TaskDefinition:
        return TaskDefinition(
            id=db_task.id,
            name=db_task.name,
            schedule=db_task.spec,
            protocol=db_task.protocol,
            endpoint=db_task.command,
            http_method=db_task.http_method,
            timeout_seconds=db_task.timeout,
            retry_times=db_task.retry_times,
            retry_interval_seconds=db_task.retry_interval,
            request_headers=db_task.request_headers,
            request_body=db_task.request_body,
            enabled=db_task.status == TASK_ENABLED
        )

    def _db_to_log(self, db_log: TaskLogModel) -> TaskExecutionLog:
        return TaskExecutionLog(
            id=db_log.id,
            task_id=db_log.task_id,
            name=db_log.name,
            schedule=db_log.spec,
            protocol=db_log.protocol,
            endpoint=db_log.command,
            timeout_seconds=db_log.timeout,
            retry_times=db_log.retry_times,
            hostname=db_log.hostname,
            status=ExecutionStatus(db_log.status),
            result=db_log.result or "",
            started_at=db_log.start_time,
            ended_at=db_log.end_time
        )


class InMemoryTaskStore(SqlAlchemyTaskStore):
    def __init__(self):
        super().__init__("sqlite+aiosqlite:///:memory:")
