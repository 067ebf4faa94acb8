"""
SQL 持久化网关 - 基于 SQLAlchemy 2.x 异步引擎的 PersistenceGateway 实现。

默认后端为本地 SQLite 文件（sqlite+aiosqlite），也可以通过 storage.database_url
指向任何 SQLAlchemy 支持的异步驱动。

每个方法都在一个独立的短事务中完成，满足单行级原子性；
网关本身不吞异常，由调用方决定记录日志还是向上抛出。

依赖：
- sqlalchemy[asyncio]：异步 ORM 与连接池
- aiosqlite：SQLite 异步驱动
"""

import math
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, AsyncGenerator

import sqlalchemy as sa
from loguru import logger
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from sessionhub.session.models import MessageRecord
from sessionhub.storage.base import PersistenceGateway
from sessionhub.storage.tables import (
    Base,
    MessageRow,
    SessionRow,
    WebhookEventRow,
    to_naive_utc,
    utcnow,
)
from sessionhub.utils.helpers import ensure_dir, truncate_string

# 投递记录中响应体的最大保存长度
MAX_RESPONSE_BODY = 2000

_SESSION_FIELDS = ("name", "status", "phone_number", "user_id", "webhook_url")


class SqlPersistenceGateway(PersistenceGateway):
    """
    SQLAlchemy 持久化网关。

    属性:
        database_url: 数据库连接地址
        engine: 异步引擎（initialize() 之后可用）
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def initialize(self) -> None:
        """创建引擎并建表（已存在的表保持不变）。"""
        url = make_url(self.database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            ensure_dir(Path(url.database).expanduser().parent)

        self.engine = create_async_engine(self.database_url, echo=self.echo)
        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database ready: {url.render_as_string(hide_password=True)}")

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session_factory is None:
            raise RuntimeError("Gateway not initialized. Call initialize() first.")
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    # ----- 会话 -----

    async def save_session(self, data: dict[str, Any]) -> None:
        async with self._session() as db:
            row = await db.get(SessionRow, data["id"])
            if row is None:
                row = SessionRow(id=data["id"])
                db.add(row)
            for key in _SESSION_FIELDS:
                if key in data:
                    setattr(row, key, data[key])
            row.last_activity = utcnow()

    async def get_all_sessions(self) -> list[dict[str, Any]]:
        async with self._session() as db:
            result = await db.scalars(sa.select(SessionRow).order_by(SessionRow.created_at.desc()))
            return [row.to_dict() for row in result]

    async def get_session(self, session_id: str) -> dict[str, Any] | None:
        async with self._session() as db:
            row = await db.get(SessionRow, session_id)
            return row.to_dict() if row else None

    async def update_session_status(
        self, session_id: str, status: str, phone_number: str | None = None
    ) -> None:
        values: dict[str, Any] = {"status": status, "last_activity": utcnow()}
        if phone_number is not None:
            values["phone_number"] = phone_number
        async with self._session() as db:
            await db.execute(sa.update(SessionRow).where(SessionRow.id == session_id).values(**values))

    async def delete_session(self, session_id: str) -> None:
        async with self._session() as db:
            await db.execute(sa.delete(SessionRow).where(SessionRow.id == session_id))

    async def increment_session_message_count(self, session_id: str, direction: str) -> None:
        if direction == "outgoing":
            column = SessionRow.messages_sent
        elif direction == "incoming":
            column = SessionRow.messages_received
        else:
            raise ValueError(f"Unknown message direction: {direction}")
        async with self._session() as db:
            await db.execute(
                sa.update(SessionRow)
                .where(SessionRow.id == session_id)
                .values({column: column + 1, SessionRow.last_activity: utcnow()})
            )

    async def increment_session_errors(self, session_id: str) -> None:
        async with self._session() as db:
            await db.execute(
                sa.update(SessionRow)
                .where(SessionRow.id == session_id)
                .values(errors=SessionRow.errors + 1)
            )

    async def set_session_webhook(self, session_id: str, webhook_url: str | None) -> None:
        async with self._session() as db:
            await db.execute(
                sa.update(SessionRow)
                .where(SessionRow.id == session_id)
                .values(webhook_url=webhook_url or None)
            )

    async def get_session_webhook(self, session_id: str) -> dict[str, Any] | None:
        async with self._session() as db:
            row = (
                await db.execute(
                    sa.select(SessionRow.webhook_url, SessionRow.name).where(SessionRow.id == session_id)
                )
            ).first()
            if row is None:
                return None
            return {"webhook_url": row.webhook_url, "name": row.name}

    async def get_sessions_metrics(self) -> dict[str, Any]:
        async with self._session() as db:
            result = await db.execute(
                sa.select(SessionRow.status, sa.func.count()).group_by(SessionRow.status)
            )
            by_status = {status: count for status, count in result.all()}
        return {"total": sum(by_status.values()), "byStatus": by_status}

    # ----- 消息 -----

    async def save_message(self, record: MessageRecord) -> None:
        async with self._session() as db:
            db.add(MessageRow(
                id=record.id,
                session_id=record.session_id,
                direction=record.direction,
                from_number=record.sender,
                to_number=record.recipient,
                body=record.body,
                message_type=record.type,
                status=record.status,
                has_media=record.has_media,
                timestamp=to_naive_utc(record.timestamp),
            ))

    async def get_messages(
        self, session_id: str | None = None, page: int = 1, limit: int = 50
    ) -> dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)
        query = sa.select(MessageRow)
        count_query = sa.select(sa.func.count()).select_from(MessageRow)
        if session_id:
            query = query.where(MessageRow.session_id == session_id)
            count_query = count_query.where(MessageRow.session_id == session_id)
        query = (
            query.order_by(MessageRow.timestamp.desc(), MessageRow.pk.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )

        async with self._session() as db:
            rows = (await db.scalars(query)).all()
            total = (await db.execute(count_query)).scalar_one()

        return {
            "messages": [row.to_dict() for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
            },
        }

    async def get_total_message_count(self) -> int:
        async with self._session() as db:
            return (await db.execute(sa.select(sa.func.count()).select_from(MessageRow))).scalar_one()

    async def get_messages_metrics(self) -> dict[str, Any]:
        since = utcnow() - timedelta(hours=24)
        async with self._session() as db:
            recent = (
                await db.scalars(sa.select(MessageRow.timestamp).where(MessageRow.timestamp >= since))
            ).all()
            types = (
                await db.execute(
                    sa.select(MessageRow.message_type, sa.func.count()).group_by(MessageRow.message_type)
                )
            ).all()
            statuses = (
                await db.execute(
                    sa.select(MessageRow.status, sa.func.count()).group_by(MessageRow.status)
                )
            ).all()

        # 按小时聚合在 Python 侧完成，不依赖具体数据库的日期函数
        hourly: dict[str, int] = {}
        for ts in recent:
            hour = f"{ts.hour:02d}"
            hourly[hour] = hourly.get(hour, 0) + 1

        return {
            "hourlyMessages": [{"hour": h, "count": hourly[h]} for h in sorted(hourly)],
            "messageTypes": [{"message_type": t, "count": c} for t, c in types],
            "messageStatus": [{"status": s, "count": c} for s, c in statuses],
        }

    # ----- Webhook 投递记录 -----

    async def log_webhook_event(
        self,
        session_id: str,
        event_type: str,
        webhook_url: str,
        payload: str,
        attempt: int,
        response_status: int,
        response_body: str,
    ) -> None:
        async with self._session() as db:
            db.add(WebhookEventRow(
                session_id=session_id,
                event_type=event_type,
                webhook_url=webhook_url,
                payload=payload,
                attempt=attempt,
                response_status=response_status,
                response_body=truncate_string(response_body or "", MAX_RESPONSE_BODY),
            ))

    async def get_webhook_events(self, session_id: str, limit: int = 100) -> list[dict[str, Any]]:
        async with self._session() as db:
            rows = (
                await db.scalars(
                    sa.select(WebhookEventRow)
                    .where(WebhookEventRow.session_id == session_id)
                    .order_by(WebhookEventRow.id.desc())
                    .limit(limit)
                )
            ).all()
        return [row.to_dict() for row in reversed(rows)]

    # ----- 维护 -----

    async def cleanup_old_data(self, days: int = 30) -> dict[str, int]:
        cutoff = utcnow() - timedelta(days=days)
        async with self._session() as db:
            webhook_result = await db.execute(
                sa.delete(WebhookEventRow).where(WebhookEventRow.created_at < cutoff)
            )
            message_result = await db.execute(
                sa.delete(MessageRow).where(MessageRow.timestamp < cutoff)
            )
        removed = {
            "webhook_events": webhook_result.rowcount or 0,
            "messages": message_result.rowcount or 0,
        }
        logger.info(
            f"Cleaned up data older than {days} days: "
            f"{removed['webhook_events']} webhook events, {removed['messages']} messages"
        )
        return removed

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Database engine disposed")
        self.engine = None
        self._session_factory = None
